from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum

from octto.domain.models.questions import QuestionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionStatus(str, Enum):
    """Question lifecycle status"""
    PENDING = "pending"
    ANSWERED = "answered"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


TERMINAL_STATUSES = frozenset({
    QuestionStatus.ANSWERED,
    QuestionStatus.CANCELLED,
    QuestionStatus.TIMEOUT,
})


class Question(BaseModel):
    """A single prompt posed to the respondent within a session"""
    id: str
    session_id: str
    type: QuestionType
    config: Dict[str, Any] = Field(default_factory=dict)
    status: QuestionStatus = Field(default=QuestionStatus.PENDING)
    created_at: datetime = Field(default_factory=utcnow)
    answered_at: Optional[datetime] = None
    response: Optional[Any] = None
    retrieved: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status == QuestionStatus.PENDING

    def resolve(self, status: QuestionStatus, response: Any = None) -> bool:
        """
        Move the question out of pending.

        Returns False, leaving the question untouched, if it already left
        pending or if ``status`` is not terminal.
        """
        if not self.is_pending or status not in TERMINAL_STATUSES:
            return False

        self.status = status
        if status == QuestionStatus.ANSWERED:
            self.response = response
            self.answered_at = utcnow()
        return True

    def summary(self) -> "QuestionSummary":
        return QuestionSummary(
            id=self.id,
            type=self.type,
            status=self.status,
            created_at=self.created_at,
            answered_at=self.answered_at,
        )


class Session(BaseModel):
    """One interactive exchange bound to one transport endpoint"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    title: Optional[str] = None
    port: int
    url: str
    created_at: datetime = Field(default_factory=utcnow)
    questions: Dict[str, Question] = Field(default_factory=dict)
    connected: bool = False
    transport: Optional[Any] = Field(default=None, exclude=True)
    answer_order: List[str] = Field(default_factory=list, description="Question ids in answer-arrival order")

    def pending_questions(self) -> List[Question]:
        return [q for q in self.questions.values() if q.is_pending]

    def has_pending(self) -> bool:
        return any(q.is_pending for q in self.questions.values())


class AnswerEvent(BaseModel):
    """Value delivered to waiters when a question resolves"""
    question_id: str
    response: Optional[Any] = None
    cancelled: bool = False


# Coordinator outputs


class StartSessionOutput(BaseModel):
    session_id: str
    url: str
    question_ids: Optional[List[str]] = None


class EndSessionOutput(BaseModel):
    ok: bool


class PushQuestionOutput(BaseModel):
    question_id: str


class CancelQuestionOutput(BaseModel):
    ok: bool


class GetAnswerOutput(BaseModel):
    completed: bool
    status: QuestionStatus
    response: Optional[Any] = None
    reason: Optional[Literal["timeout", "cancelled", "pending"]] = None


class GetNextAnswerOutput(BaseModel):
    completed: bool
    status: Union[QuestionStatus, Literal["none_pending"]]
    question_id: Optional[str] = None
    question_type: Optional[QuestionType] = None
    response: Optional[Any] = None
    reason: Optional[Literal["timeout", "none_pending"]] = None


class QuestionSummary(BaseModel):
    id: str
    type: QuestionType
    status: QuestionStatus
    created_at: datetime
    answered_at: Optional[datetime] = None


class ListQuestionsOutput(BaseModel):
    questions: List[QuestionSummary] = Field(default_factory=list)


class QuestionInput(BaseModel):
    """A question to register when a session starts"""
    type: QuestionType
    config: Dict[str, Any] = Field(default_factory=dict)
