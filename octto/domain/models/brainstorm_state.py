from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field
from enum import Enum
import time

from octto.domain.models.questions import QuestionType


def now_ms() -> int:
    return int(time.time() * 1000)


class BranchStatus(str, Enum):
    """Branch exploration status"""
    EXPLORING = "exploring"
    DONE = "done"


class BranchQuestion(BaseModel):
    """A question asked within a branch, with its answer once given"""
    id: str
    type: QuestionType
    text: str
    config: Dict[str, Any] = Field(default_factory=dict)
    answer: Optional[Any] = None
    answered_at: Optional[int] = Field(None, description="Epoch milliseconds")

    @property
    def is_answered(self) -> bool:
        return self.answer is not None


class Branch(BaseModel):
    """A named sub-exploration with its own scope and Q&A history"""
    id: str
    scope: str
    status: BranchStatus = Field(default=BranchStatus.EXPLORING)
    questions: List[BranchQuestion] = Field(default_factory=list)
    finding: Optional[str] = None

    def answered_questions(self) -> List[BranchQuestion]:
        return [q for q in self.questions if q.is_answered]

    def find_question(self, question_id: str) -> Optional[BranchQuestion]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


class BranchSpec(BaseModel):
    """Branch definition used when creating a brainstorm session"""
    id: str
    scope: str


class BrainstormState(BaseModel):
    """Snapshot of a multi-branch brainstorm, persisted as one JSON document"""
    session_id: str
    transport_session_id: Optional[str] = None
    request: str
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    branches: Dict[str, Branch] = Field(default_factory=dict)
    branch_order: List[str] = Field(default_factory=list)

    def ordered_branches(self) -> List[Branch]:
        return [self.branches[branch_id] for branch_id in self.branch_order]

    def find_branch_for_question(self, question_id: str) -> Optional[Branch]:
        for branch in self.ordered_branches():
            if branch.find_question(question_id) is not None:
                return branch
        return None

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "session_id": self.session_id,
            "transport_session_id": self.transport_session_id,
            "branches": len(self.branches),
            "done": len([b for b in self.branches.values() if b.status == BranchStatus.DONE]),
            "questions": sum(len(b.questions) for b in self.branches.values()),
            "updated_at": self.updated_at,
        }


class ProposedQuestion(BaseModel):
    type: QuestionType
    config: Dict[str, Any] = Field(default_factory=dict)


class ProbeResult(BaseModel):
    """Branch evaluation outcome: ask more, wait, or done with a finding"""
    done: bool
    reason: str
    finding: Optional[str] = None
    question: Optional[ProposedQuestion] = None
