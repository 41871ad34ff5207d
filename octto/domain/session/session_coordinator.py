from typing import Dict, Any, Optional, Callable, Awaitable, Sequence, Set, Union
import asyncio
import time
import structlog

from octto.application.websocket.connection_manager import TransportSession, TransportHandler
from octto.application.websocket.schema.events import (
    QuestionEvent, CancelEvent, EndEvent, ResponseMessage, ConnectedMessage
)
from octto.domain.errors import SessionNotFoundError, QuestionConfigError
from octto.domain.models.identifiers import generate_id
from octto.domain.models.questions import QuestionType, normalize_config
from octto.domain.models.session_state import (
    Session, Question, QuestionStatus, QuestionInput, AnswerEvent,
    StartSessionOutput, EndSessionOutput, PushQuestionOutput, CancelQuestionOutput,
    GetAnswerOutput, GetNextAnswerOutput, ListQuestionsOutput,
)
from octto.domain.session.waiter_registry import WaiterRegistry
from octto.infrastructure.browser import open_browser
from octto.infrastructure.config.settings import Settings, get_settings
from octto.infrastructure.observability.logging import MetricsCollector, session_logger

logger = structlog.get_logger(__name__)

OpenUI = Callable[[str], Awaitable[None]]
TransportFactory = Callable[[str, TransportHandler, Optional[str]], TransportSession]


class SessionCoordinator:
    """
    Owns sessions and their questions.

    All state lives on this instance; each session's transport receives the
    coordinator as its handler, so several coordinators can coexist in one
    process. Everything runs on one event loop and nothing here is locked:
    mutations happen between awaits, never across them.

    Two waiter registries back the blocking reads. ``response_waiters`` is
    keyed by question id and always notified with ``notify_all``;
    ``session_waiters`` is keyed by session id and notified with
    ``notify_first`` so concurrent ``get_next_answer`` callers each receive a
    different answer.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        skip_browser: Optional[bool] = None,
        open_ui: Optional[OpenUI] = None,
        transport_factory: Optional[TransportFactory] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.settings = settings or get_settings()
        self.skip_browser = self.settings.skip_browser if skip_browser is None else skip_browser
        self.open_ui = open_ui or open_browser
        self.transport_factory = transport_factory or self._create_transport
        self.metrics = metrics or MetricsCollector()

        self.sessions: Dict[str, Session] = {}
        self.question_to_session: Dict[str, str] = {}
        self.response_waiters: WaiterRegistry[str, AnswerEvent] = WaiterRegistry()
        self.session_waiters: WaiterRegistry[str, AnswerEvent] = WaiterRegistry()
        self._background_tasks: Set[asyncio.Task] = set()

    def _create_transport(self, session_id: str, handler: TransportHandler, title: Optional[str]) -> TransportSession:
        return TransportSession(session_id, handler, host=self.settings.host, title=title)

    # Session lifecycle

    async def start_session(
        self,
        title: Optional[str] = None,
        questions: Optional[Sequence[Union[QuestionInput, Dict[str, Any]]]] = None,
    ) -> StartSessionOutput:
        """
        Start a transport on an ephemeral port and register a new session.

        Initial questions are registered before the UI opens, so the first
        connection receives them with the backlog.

        Raises:
            TransportFailure: If the listener cannot be bound
        """

        session_id = generate_id("ses")
        transport = self.transport_factory(session_id, self, title)
        port = await transport.start()

        session = Session(
            id=session_id,
            title=title,
            port=port,
            url=transport.url,
            transport=transport,
        )
        self.sessions[session_id] = session

        question_ids = []
        for item in questions or []:
            initial = item if isinstance(item, QuestionInput) else QuestionInput.model_validate(item)
            question = self._create_question(session, initial.type, initial.config)
            question_ids.append(question.id)

        logger.info("Session started", session_id=session_id, url=session.url, questions=len(question_ids))

        if not self.skip_browser:
            await self._open_ui_safely(session.url)

        return StartSessionOutput(
            session_id=session_id,
            url=session.url,
            question_ids=question_ids or None,
        )

    async def end_session(self, session_id: str) -> EndSessionOutput:
        """
        Tear a session down.

        Question-level waiters are dropped without being notified; blocked
        callers unblock through their own timeouts.
        """

        session = self.sessions.pop(session_id, None)
        if session is None:
            return EndSessionOutput(ok=False)

        transport = session.transport
        if transport is not None:
            if session.connected:
                try:
                    await transport.send_event(EndEvent())
                except Exception as e:
                    logger.error("Failed to send end notice", session_id=session_id, error=str(e))
            try:
                await transport.stop()
            except Exception as e:
                logger.error("Failed to stop transport", session_id=session_id, error=str(e))

        for question_id in session.questions:
            self.question_to_session.pop(question_id, None)
            self.response_waiters.clear(question_id)

        session.connected = False
        logger.info("Session ended", session_id=session_id)
        return EndSessionOutput(ok=True)

    async def cleanup(self):
        """End every session (process teardown)"""

        for session_id in list(self.sessions.keys()):
            await self.end_session(session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    # Questions

    async def push_question(
        self,
        session_id: str,
        question_type: Union[QuestionType, str],
        config: Optional[Dict[str, Any]] = None,
    ) -> PushQuestionOutput:
        """
        Add a pending question and deliver it if a client is attached.

        Without a client the question waits in the backlog; every push while
        disconnected also asks for the UI to be reopened.

        Raises:
            SessionNotFoundError: If the session does not exist
            QuestionConfigError: If the type is unknown or the config malformed
        """

        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        question = self._create_question(session, question_type, config)

        if session.connected and session.transport is not None:
            await session.transport.send_event(self._question_event(question))
        elif not self.skip_browser:
            self._reopen_ui(session)

        return PushQuestionOutput(question_id=question.id)

    async def get_answer(
        self,
        question_id: str,
        block: bool = False,
        timeout: Optional[float] = None,
    ) -> GetAnswerOutput:
        """
        Current outcome of a question, optionally waiting for it to resolve.

        A blocking call resolves on the first of: the client's response,
        cancellation, or ``timeout`` seconds elapsing. Only the timeout path
        changes the question's status as a side effect.
        """

        question = self._find_question(question_id)
        if question is None:
            return GetAnswerOutput(completed=False, status=QuestionStatus.CANCELLED, reason="cancelled")

        terminal = self._terminal_answer(question)
        if terminal is not None:
            return terminal

        if not block:
            return GetAnswerOutput(completed=False, status=QuestionStatus.PENDING, reason="pending")

        timeout = self.settings.answer_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        started = time.monotonic()

        def on_event(event: AnswerEvent):
            timer.cancel()
            if future.done():
                return
            if event.cancelled:
                future.set_result(
                    GetAnswerOutput(completed=False, status=QuestionStatus.CANCELLED, reason="cancelled")
                )
            else:
                future.set_result(
                    GetAnswerOutput(completed=True, status=QuestionStatus.ANSWERED, response=event.response)
                )

        def on_timeout():
            cancel_waiter()
            if future.done():
                return
            if question.resolve(QuestionStatus.TIMEOUT):
                session_logger.log_question_event("timeout", question.session_id, question.id)
            future.set_result(
                GetAnswerOutput(completed=False, status=QuestionStatus.TIMEOUT, reason="timeout")
            )

        cancel_waiter = self.response_waiters.register(question_id, on_event)
        timer = loop.call_later(timeout, on_timeout)

        try:
            return await future
        finally:
            timer.cancel()
            cancel_waiter()
            self.metrics.record_latency("get_answer", (time.monotonic() - started) * 1000)

    async def get_next_answer(
        self,
        session_id: str,
        block: bool = False,
        timeout: Optional[float] = None,
    ) -> GetNextAnswerOutput:
        """
        Next answered question of a session that no caller has retrieved yet.

        Answers are handed out in arrival order, each exactly once. A
        blocking call with nothing ready waits for the next answer in the
        session; its timeout does not touch any question's status.
        """

        session = self.sessions.get(session_id)
        if session is None:
            return GetNextAnswerOutput(completed=False, status="none_pending", reason="none_pending")

        question = self._take_unretrieved(session)
        if question is not None:
            return self._next_answer_output(question)

        if not session.has_pending():
            return GetNextAnswerOutput(completed=False, status="none_pending", reason="none_pending")

        if not block:
            return GetNextAnswerOutput(completed=False, status=QuestionStatus.PENDING)

        timeout = self.settings.answer_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        started = time.monotonic()

        def on_event(event: AnswerEvent):
            timer.cancel()
            if future.done():
                # Caller gave up before its waiter was removed; hand the answer on
                self.session_waiters.notify_first(session_id, event)
                return
            answered = session.questions.get(event.question_id)
            if answered is None:
                return
            answered.retrieved = True
            future.set_result(self._next_answer_output(answered))

        def on_timeout():
            cancel_waiter()
            if not future.done():
                future.set_result(
                    GetNextAnswerOutput(completed=False, status=QuestionStatus.TIMEOUT, reason="timeout")
                )

        cancel_waiter = self.session_waiters.register(session_id, on_event)
        future.add_done_callback(lambda _: cancel_waiter())
        timer = loop.call_later(timeout, on_timeout)

        try:
            return await future
        finally:
            timer.cancel()
            cancel_waiter()
            self.metrics.record_latency("get_next_answer", (time.monotonic() - started) * 1000)

    async def cancel_question(self, question_id: str) -> CancelQuestionOutput:
        """Cancel a pending question; every blocked ``get_answer`` on it observes the cancellation"""

        question = self._find_question(question_id)
        if question is None or not question.resolve(QuestionStatus.CANCELLED):
            return CancelQuestionOutput(ok=False)

        session = self.sessions[question.session_id]
        session_logger.log_question_event("cancelled", session.id, question_id)
        self.response_waiters.notify_all(question_id, AnswerEvent(question_id=question_id, cancelled=True))

        if session.connected and session.transport is not None:
            await session.transport.send_event(CancelEvent(id=question_id))

        return CancelQuestionOutput(ok=True)

    def list_questions(self, session_id: Optional[str] = None) -> ListQuestionsOutput:
        """Question summaries, newest first"""

        if session_id is not None:
            sessions = [self.sessions[session_id]] if session_id in self.sessions else []
        else:
            sessions = list(self.sessions.values())

        summaries = [
            question.summary()
            for session in sessions
            for question in session.questions.values()
        ]
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return ListQuestionsOutput(questions=summaries)

    # Transport callbacks

    async def handle_connect(self, session_id: str) -> None:
        """Attach a client and flush the whole pending backlog to it"""

        session = self.sessions.get(session_id)
        if session is None or session.transport is None:
            return

        session.connected = True
        backlog = session.pending_questions()
        logger.info("Client attached", session_id=session_id, backlog=len(backlog))

        for question in backlog:
            # Earlier sends yield; the question may have been cancelled meanwhile
            if not question.is_pending:
                continue
            await session.transport.send_event(self._question_event(question))

    def handle_disconnect(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return

        session.connected = False
        logger.info("Client detached", session_id=session_id)

    def handle_message(self, session_id: str, message: Union[ResponseMessage, ConnectedMessage]) -> None:
        """Apply a client message; responses to non-pending questions are dropped"""

        if isinstance(message, ConnectedMessage):
            logger.debug("Client handshake", session_id=session_id)
            return

        session = self.sessions.get(session_id)
        if session is None:
            return

        question = session.questions.get(message.id)
        if question is None or not question.resolve(QuestionStatus.ANSWERED, message.answer):
            logger.debug("Dropping response", session_id=session_id, question_id=message.id)
            return

        session.answer_order.append(question.id)
        self.metrics.increment_counter("answers_received")
        session_logger.log_question_event("answered", session_id, question.id)

        event = AnswerEvent(question_id=question.id, response=message.answer)
        self.response_waiters.notify_all(question.id, event)
        self.session_waiters.notify_first(session_id, event)

    # Internals

    def _create_question(
        self,
        session: Session,
        question_type: Union[QuestionType, str],
        config: Optional[Dict[str, Any]],
    ) -> Question:
        try:
            question_type = QuestionType(question_type)
        except ValueError as e:
            raise QuestionConfigError(f"Unknown question type: {question_type}") from e

        question = Question(
            id=generate_id("q"),
            session_id=session.id,
            type=question_type,
            config=normalize_config(question_type, config),
        )
        session.questions[question.id] = question
        self.question_to_session[question.id] = session.id

        self.metrics.increment_counter("questions_pushed", tags={"type": question_type.value})
        session_logger.log_question_event("pushed", session.id, question.id, question_type=question_type.value)
        return question

    def _find_question(self, question_id: str) -> Optional[Question]:
        session_id = self.question_to_session.get(question_id)
        if session_id is None:
            return None
        session = self.sessions.get(session_id)
        if session is None:
            return None
        return session.questions.get(question_id)

    @staticmethod
    def _terminal_answer(question: Question) -> Optional[GetAnswerOutput]:
        if question.status == QuestionStatus.ANSWERED:
            return GetAnswerOutput(completed=True, status=QuestionStatus.ANSWERED, response=question.response)
        if question.status == QuestionStatus.CANCELLED:
            return GetAnswerOutput(completed=False, status=QuestionStatus.CANCELLED, reason="cancelled")
        if question.status == QuestionStatus.TIMEOUT:
            return GetAnswerOutput(completed=False, status=QuestionStatus.TIMEOUT, reason="timeout")
        return None

    @staticmethod
    def _take_unretrieved(session: Session) -> Optional[Question]:
        for question_id in session.answer_order:
            question = session.questions[question_id]
            if not question.retrieved:
                question.retrieved = True
                return question
        return None

    @staticmethod
    def _next_answer_output(question: Question) -> GetNextAnswerOutput:
        return GetNextAnswerOutput(
            completed=True,
            status=QuestionStatus.ANSWERED,
            question_id=question.id,
            question_type=question.type,
            response=question.response,
        )

    @staticmethod
    def _question_event(question: Question) -> QuestionEvent:
        return QuestionEvent(id=question.id, question_type=question.type, config=question.config)

    def _reopen_ui(self, session: Session):
        """Fire-and-forget UI reopen; failures are logged, never raised"""

        task = asyncio.create_task(self._open_ui_safely(session.url))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _open_ui_safely(self, url: str):
        try:
            await self.open_ui(url)
        except Exception as e:
            logger.error("Failed to open UI", url=url, error=str(e))
