from typing import TypedDict, List, Dict, Any, Optional, Literal, Sequence, Union
from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field
import structlog

from octto.domain.context.state.state_manager import BranchStateStore
from octto.domain.errors import SessionNotFoundError, BranchNotFoundError
from octto.domain.models.brainstorm_state import (
    BrainstormState, Branch, BranchQuestion, BranchSpec, BranchStatus, ProbeResult
)
from octto.domain.models.identifiers import generate_id
from octto.domain.models.questions import question_text
from octto.domain.models.session_state import QuestionInput
from octto.domain.orchestration.branch_evaluator import evaluate_branch, synthesize_finding
from octto.domain.session.session_coordinator import SessionCoordinator
from octto.infrastructure.config.settings import Settings, get_settings
from octto.infrastructure.observability.logging import session_logger

logger = structlog.get_logger(__name__)

BRAINSTORM_TITLE = "Brainstorming Session"


class BranchInput(BaseModel):
    """Branch to explore, with the question that opens it"""
    id: str
    scope: str
    initial_question: QuestionInput


class CreateBrainstormOutput(BaseModel):
    session_id: str
    transport_session_id: str
    url: str
    branch_ids: List[str] = Field(default_factory=list)


class BrainstormRunResult(BaseModel):
    session_id: str
    complete: bool
    stop_reason: Optional[str] = None
    answers_processed: int = 0
    summary: str = ""


class BrainstormWorkflowState(TypedDict):
    """State for the brainstorm loop graph"""
    session_id: str
    transport_session_id: str
    answer_timeout: float
    last_answer: Optional[Dict[str, Any]]
    next_action: Optional[str]
    stop_reason: Optional[str]
    answers_processed: int
    trace: List[str]
    summary: Optional[str]


class BrainstormOrchestrator:
    """
    Drives a multi-branch brainstorm over one coordinator session.

    Each answer is recorded on its branch, the branch is re-evaluated, and
    either the branch is completed or its follow-up question is pushed. The
    loop is a LangGraph graph: await_answer -> process_answer -> ... ->
    finalize.
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        state_store: BranchStateStore,
        settings: Optional[Settings] = None,
    ):
        self.coordinator = coordinator
        self.state_store = state_store
        self.settings = settings or get_settings()
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the answer loop graph"""

        workflow = StateGraph(BrainstormWorkflowState)

        workflow.add_node("await_answer", self.await_answer_node)
        workflow.add_node("process_answer", self.process_answer_node)
        workflow.add_node("finalize", self.finalize_node)

        workflow.set_entry_point("await_answer")

        workflow.add_conditional_edges(
            "await_answer",
            self.route_after_wait,
            {
                "process": "process_answer",
                "finish": "finalize"
            }
        )
        workflow.add_conditional_edges(
            "process_answer",
            self.route_after_process,
            {
                "continue": "await_answer",
                "finish": "finalize"
            }
        )
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # Public operations

    async def create_brainstorm(
        self,
        request: str,
        branches: Sequence[Union[BranchInput, Dict[str, Any]]],
    ) -> CreateBrainstormOutput:
        """Create the branch state and open a session holding each branch's first question"""

        inputs = [b if isinstance(b, BranchInput) else BranchInput.model_validate(b) for b in branches]
        if not inputs:
            raise ValueError("At least one branch is required")

        session_id = generate_id("ses")
        await self.state_store.create_session(
            session_id,
            request,
            [BranchSpec(id=b.id, scope=b.scope) for b in inputs],
        )

        started = await self.coordinator.start_session(
            title=BRAINSTORM_TITLE,
            questions=[b.initial_question for b in inputs],
        )
        await self.state_store.set_transport_session_id(session_id, started.session_id)

        session = self.coordinator.get_session(started.session_id)
        for branch_input, question_id in zip(inputs, started.question_ids or []):
            config = session.questions[question_id].config
            await self.state_store.add_question_to_branch(
                session_id,
                branch_input.id,
                BranchQuestion(
                    id=question_id,
                    type=branch_input.initial_question.type,
                    text=question_text(config),
                    config=config,
                ),
            )

        logger.info(
            "Brainstorm created",
            session_id=session_id,
            transport_session_id=started.session_id,
            branches=[b.id for b in inputs]
        )

        return CreateBrainstormOutput(
            session_id=session_id,
            transport_session_id=started.session_id,
            url=started.url,
            branch_ids=[b.id for b in inputs],
        )

    async def process_answer(self, session_id: str, question_id: str, answer: Any) -> Optional[ProbeResult]:
        """
        Record an answer and advance its branch.

        Returns the evaluation, or None when the question belongs to no
        exploring branch.
        """

        state = await self.state_store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)

        branch = state.find_branch_for_question(question_id)
        if branch is None or branch.status == BranchStatus.DONE:
            logger.debug("Answer outside exploring branches", session_id=session_id, question_id=question_id)
            return None

        await self.state_store.record_answer(session_id, question_id, answer)

        state = await self.state_store.get_session(session_id)
        branch = state.branches[branch.id]
        result = evaluate_branch(branch)

        if result.done:
            await self.state_store.complete_branch(session_id, branch.id, result.finding or "No finding")
            session_logger.log_branch_transition(
                session_id, branch.id, "complete", result.reason, state_summary=state.get_state_summary()
            )
            return result

        if result.question is None:
            session_logger.log_branch_transition(session_id, branch.id, "wait", result.reason)
            return result

        asked = sum(len(b.questions) for b in state.branches.values())
        if asked >= self.settings.max_questions:
            finding = synthesize_finding(branch)
            await self.state_store.complete_branch(session_id, branch.id, finding)
            session_logger.log_branch_transition(session_id, branch.id, "complete", "Question limit reached")
            return ProbeResult(done=True, reason="Question limit reached", finding=finding)

        await self._push_follow_up(state, branch, result)
        session_logger.log_branch_transition(session_id, branch.id, "follow_up", result.reason)
        return result

    async def run(self, session_id: str, answer_timeout: Optional[float] = None) -> BrainstormRunResult:
        """Collect answers until every branch is done, answers stop coming, or the wait times out"""

        state = await self.state_store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        if state.transport_session_id is None:
            raise SessionNotFoundError(f"{session_id} (no transport session)")

        initial_state: BrainstormWorkflowState = {
            "session_id": session_id,
            "transport_session_id": state.transport_session_id,
            "answer_timeout": answer_timeout or self.settings.answer_timeout,
            "last_answer": None,
            "next_action": None,
            "stop_reason": None,
            "answers_processed": 0,
            "trace": [],
            "summary": None,
        }

        # Two graph steps per answer; questions are capped by max_questions
        # plus the initial one per branch.
        recursion_limit = 4 * (self.settings.max_questions + len(state.branches)) + 10

        with structlog.contextvars.bound_contextvars(brainstorm_id=session_id):
            final = await self.workflow.ainvoke(initial_state, config={"recursion_limit": recursion_limit})

        return BrainstormRunResult(
            session_id=session_id,
            complete=await self.state_store.is_session_complete(session_id),
            stop_reason=final.get("stop_reason"),
            answers_processed=final.get("answers_processed", 0),
            summary=final.get("summary") or "",
        )

    async def get_branch_status(self, session_id: str, branch_id: str) -> Branch:
        state = await self.state_store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        branch = state.branches.get(branch_id)
        if branch is None:
            raise BranchNotFoundError(branch_id)
        return branch

    async def end_brainstorm(self, session_id: str) -> str:
        """End the transport session, delete the snapshot and return the findings summary"""

        state = await self.state_store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)

        if state.transport_session_id:
            await self.coordinator.end_session(state.transport_session_id)

        summary = summarize(state)
        await self.state_store.delete_session(session_id)
        logger.info("Brainstorm ended", session_id=session_id)
        return summary

    # Graph nodes

    async def await_answer_node(self, state: BrainstormWorkflowState) -> Dict[str, Any]:
        """Block until the next answer arrives in the transport session"""

        trace = state["trace"] + ["await_answer"]
        result = await self.coordinator.get_next_answer(
            state["transport_session_id"],
            block=True,
            timeout=state["answer_timeout"],
        )

        if not result.completed:
            return {
                "trace": trace,
                "last_answer": None,
                "next_action": "finish",
                "stop_reason": getattr(result.status, "value", result.status),
            }

        return {
            "trace": trace,
            "last_answer": {"question_id": result.question_id, "response": result.response},
            "next_action": "process",
        }

    async def process_answer_node(self, state: BrainstormWorkflowState) -> Dict[str, Any]:
        """Record the answer and advance its branch"""

        answer = state["last_answer"]
        await self.process_answer(state["session_id"], answer["question_id"], answer["response"])

        update: Dict[str, Any] = {
            "trace": state["trace"] + ["process_answer"],
            "answers_processed": state["answers_processed"] + 1,
            "next_action": "continue",
        }
        if await self.state_store.is_session_complete(state["session_id"]):
            update["next_action"] = "finish"
            update["stop_reason"] = "complete"
        return update

    async def finalize_node(self, state: BrainstormWorkflowState) -> Dict[str, Any]:
        """Summarise findings"""

        brainstorm = await self.state_store.get_session(state["session_id"])
        return {
            "trace": state["trace"] + ["finalize"],
            "summary": summarize(brainstorm) if brainstorm else "",
        }

    def route_after_wait(self, state: BrainstormWorkflowState) -> Literal["process", "finish"]:
        return "process" if state.get("next_action") == "process" else "finish"

    def route_after_process(self, state: BrainstormWorkflowState) -> Literal["continue", "finish"]:
        return "finish" if state.get("next_action") == "finish" else "continue"

    # Internals

    async def _push_follow_up(self, state: BrainstormState, branch: Branch, result: ProbeResult):
        proposed = result.question
        config = dict(proposed.config)
        config["context"] = f"[{branch.scope}] {config.get('context', '')}".strip()

        pushed = await self.coordinator.push_question(state.transport_session_id, proposed.type, config)
        await self.state_store.add_question_to_branch(
            state.session_id,
            branch.id,
            BranchQuestion(
                id=pushed.question_id,
                type=proposed.type,
                text=question_text(config, default="Follow-up question"),
                config=config,
            ),
        )


def summarize(state: BrainstormState) -> str:
    """Markdown summary of every branch's finding"""

    lines = [f"## Brainstorm: {state.request}", ""]
    for branch in state.ordered_branches():
        lines.append(f"### {branch.id} ({branch.status.value})")
        lines.append(f"**Scope:** {branch.scope}")
        lines.append(f"**Finding:** {branch.finding or '(none yet)'}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
