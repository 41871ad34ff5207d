from typing import Any, Iterable, List, Optional, Union, Dict
import asyncio
import structlog

from octto.domain.errors import SessionNotFoundError, BranchNotFoundError, QuestionNotFoundError
from octto.domain.models.brainstorm_state import (
    BrainstormState, Branch, BranchQuestion, BranchSpec, BranchStatus, now_ms
)
from .state_persistence import StatePersistence

logger = structlog.get_logger(__name__)


class BranchStateStore:
    """
    Brainstorm state backed by whole-file snapshots.

    Every mutation loads the latest snapshot, changes it in memory and writes
    it back in full. Within one store instance mutations are serialised by a
    lock; across instances or processes the last writer wins.
    """

    def __init__(self, base_dir: str = ".octto"):
        self.persistence = StatePersistence(base_dir)
        self._lock = asyncio.Lock()

    async def create_session(
        self,
        session_id: str,
        request: str,
        branches: Iterable[Union[BranchSpec, Dict[str, Any]]],
    ) -> BrainstormState:
        """Create and persist a state with every branch exploring"""

        self.persistence.validate_session_id(session_id)

        state = BrainstormState(session_id=session_id, request=request)
        for item in branches:
            spec = item if isinstance(item, BranchSpec) else BranchSpec.model_validate(item)
            if spec.id in state.branches:
                raise ValueError(f"Duplicate branch id: {spec.id}")
            state.branches[spec.id] = Branch(id=spec.id, scope=spec.scope)
            state.branch_order.append(spec.id)

        async with self._lock:
            self.persistence.save(state)

        logger.info("Brainstorm state created", session_id=session_id, branches=state.branch_order)
        return state

    async def get_session(self, session_id: str) -> Optional[BrainstormState]:
        return self.persistence.load(session_id)

    async def set_transport_session_id(self, session_id: str, transport_session_id: str) -> None:
        async with self._lock:
            state = self._load_existing(session_id)
            state.transport_session_id = transport_session_id
            self.persistence.save(state)

    async def add_question_to_branch(
        self,
        session_id: str,
        branch_id: str,
        question: BranchQuestion,
    ) -> BranchQuestion:
        async with self._lock:
            state = self._load_existing(session_id)
            branch = self._branch(state, branch_id)
            branch.questions.append(question)
            self.persistence.save(state)
        return question

    async def record_answer(self, session_id: str, question_id: str, answer: Any) -> bool:
        """
        Store the answer of a branch question.

        Returns:
            False if the question already holds an answer (left unchanged)

        Raises:
            SessionNotFoundError, QuestionNotFoundError
        """

        async with self._lock:
            state = self._load_existing(session_id)
            branch = state.find_branch_for_question(question_id)
            if branch is None:
                raise QuestionNotFoundError(question_id)

            question = branch.find_question(question_id)
            if question.is_answered:
                logger.warning("Answer already recorded", session_id=session_id, question_id=question_id)
                return False

            question.answer = answer
            question.answered_at = now_ms()
            self.persistence.save(state)
            return True

    async def complete_branch(self, session_id: str, branch_id: str, finding: str) -> None:
        async with self._lock:
            state = self._load_existing(session_id)
            branch = self._branch(state, branch_id)
            branch.status = BranchStatus.DONE
            branch.finding = finding
            self.persistence.save(state)

        logger.info("Branch completed", session_id=session_id, branch_id=branch_id)

    async def get_next_exploring_branch(self, session_id: str) -> Optional[Branch]:
        """First branch, in branch order, that is still exploring"""

        state = self.persistence.load(session_id)
        if state is None:
            return None

        for branch in state.ordered_branches():
            if branch.status == BranchStatus.EXPLORING:
                return branch
        return None

    async def is_session_complete(self, session_id: str) -> bool:
        state = self.persistence.load(session_id)
        if state is None:
            return False
        return all(b.status == BranchStatus.DONE for b in state.branches.values())

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            return self.persistence.delete(session_id)

    async def list_sessions(self) -> List[str]:
        return self.persistence.list()

    def _load_existing(self, session_id: str) -> BrainstormState:
        state = self.persistence.load(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    @staticmethod
    def _branch(state: BrainstormState, branch_id: str) -> Branch:
        branch = state.branches.get(branch_id)
        if branch is None:
            raise BranchNotFoundError(branch_id)
        return branch
