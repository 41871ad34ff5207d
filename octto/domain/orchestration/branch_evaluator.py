"""
Rule-based branch evaluation.

Given a branch's Q&A history, decide whether to wait, ask a follow-up or
finish with a finding. Pure and deterministic: the same branch always yields
the same result. Rules are checked in order and the first match wins:

1. Unanswered questions in the branch -> wait.
2. Three or more answers -> done.
3. Last answer was a confirm: "yes" -> done, "no" -> ask what is unclear.
4. One answer -> "what matters most" pick-one; two answers -> confirm.
5. Otherwise done.
"""

from typing import Any, Dict, List, Optional
import json
from pydantic import ValidationError

from octto.domain.models.brainstorm_state import Branch, BranchQuestion, ProbeResult, ProposedQuestion
from octto.domain.models.questions import (
    QuestionType, PickOneAnswer, PickManyAnswer, ConfirmAnswer, ThumbsAnswer,
    EmojiReactAnswer, AskTextAnswer, SliderAnswer, RankAnswer, RateAnswer,
    AskCodeAnswer, ReviewAnswer, ShowOptionsAnswer,
)

MAX_TEXT_LENGTH = 100
SUFFICIENT_ANSWERS = 3
READY_MARKER = "ready to proceed"

DEFAULT_PRIORITIES = [
    {"id": "simplicity", "label": "Keep it simple"},
    {"id": "performance", "label": "Performance matters most"},
    {"id": "flexibility", "label": "Flexibility for future changes"},
    {"id": "reliability", "label": "Reliability and stability"},
]

# (keywords, options); the first entry with a keyword in the scope wins
SCOPE_PRIORITIES = [
    (("database", "data"), [
        {"id": "consistency", "label": "Data consistency"},
        {"id": "performance", "label": "Query performance"},
        {"id": "scalability", "label": "Scalability"},
        {"id": "simplicity", "label": "Keep it simple"},
    ]),
    (("api", "endpoint"), [
        {"id": "simplicity", "label": "Simple API surface"},
        {"id": "performance", "label": "Low latency"},
        {"id": "compatibility", "label": "Backward compatibility"},
        {"id": "documentation", "label": "Easy to document"},
    ]),
    (("auth", "security"), [
        {"id": "security", "label": "Maximum security"},
        {"id": "usability", "label": "User convenience"},
        {"id": "standards", "label": "Industry standards"},
        {"id": "simplicity", "label": "Simple implementation"},
    ]),
    (("ui", "frontend", "design"), [
        {"id": "usability", "label": "User experience"},
        {"id": "performance", "label": "Fast load times"},
        {"id": "accessibility", "label": "Accessibility"},
        {"id": "simplicity", "label": "Clean and simple"},
    ]),
]


def evaluate_branch(branch: Branch) -> ProbeResult:
    """Decide the next step for a branch"""

    answered = branch.answered_questions()
    pending_count = len(branch.questions) - len(answered)

    if pending_count > 0:
        return ProbeResult(done=False, reason=f"Waiting for {pending_count} pending question(s)")

    if len(answered) >= SUFFICIENT_ANSWERS:
        return ProbeResult(
            done=True,
            reason=f"Explored {len(answered)} questions - sufficient depth for {branch.scope}",
            finding=synthesize_finding(branch),
        )

    last = answered[-1] if answered else None
    if last is not None and last.type == QuestionType.CONFIRM:
        choice = _confirm_choice(last.answer)

        if choice == "yes":
            return ProbeResult(
                done=True,
                reason="User confirmed direction is clear",
                finding=synthesize_finding(branch),
            )

        if choice == "no":
            return ProbeResult(
                done=False,
                reason="User wants to clarify something",
                question=ProposedQuestion(
                    type=QuestionType.ASK_TEXT,
                    config={
                        "question": f'What aspect of "{branch.scope}" needs more discussion?',
                        "placeholder": "What's unclear or needs more thought?",
                        "multiline": True,
                    },
                ),
            )

    follow_up = _contextual_follow_up(branch, answered)
    if follow_up is not None:
        return ProbeResult(done=False, reason=f"Exploring {branch.scope} further", question=follow_up)

    return ProbeResult(
        done=True,
        reason="Sufficient information gathered",
        finding=synthesize_finding(branch),
    )


def synthesize_finding(branch: Branch) -> str:
    """Summarise a branch as its first answer plus any further distinct answers"""

    answered = branch.answered_questions()
    if not answered:
        return f"{branch.scope}: No specific direction determined"

    summaries = [extract_answer_summary(q.type, q.answer) for q in answered]
    main_choice = summaries[0]

    qualifiers: List[str] = []
    for summary in summaries[1:]:
        if not summary or READY_MARKER in summary:
            continue
        if summary == main_choice or summary in qualifiers:
            continue
        qualifiers.append(summary)

    if qualifiers:
        return f"{branch.scope}: {main_choice}. Additional considerations: {', '.join(qualifiers)}"
    return f"{branch.scope}: {main_choice}"


def truncate_text(text: str) -> str:
    if len(text) > MAX_TEXT_LENGTH:
        return f"{text[:MAX_TEXT_LENGTH]}..."
    return text


def extract_answer_summary(question_type: QuestionType, answer: Any) -> str:
    """Short human-readable value of an answer, by question type"""

    try:
        return _extract(QuestionType(question_type), answer)
    except (ValidationError, ValueError):
        return _generic_summary(answer)


def _extract(question_type: QuestionType, answer: Any) -> str:
    if question_type == QuestionType.PICK_ONE:
        return PickOneAnswer.model_validate(answer).selected

    if question_type == QuestionType.PICK_MANY:
        return ", ".join(PickManyAnswer.model_validate(answer).selected)

    if question_type == QuestionType.CONFIRM:
        return ConfirmAnswer.model_validate(answer).choice

    if question_type == QuestionType.THUMBS:
        return ThumbsAnswer.model_validate(answer).choice

    if question_type == QuestionType.EMOJI_REACT:
        return EmojiReactAnswer.model_validate(answer).emoji

    if question_type == QuestionType.ASK_TEXT:
        return truncate_text(AskTextAnswer.model_validate(answer).text)

    if question_type == QuestionType.SLIDER:
        value = SliderAnswer.model_validate(answer).value
        return str(int(value)) if value.is_integer() else str(value)

    if question_type == QuestionType.RANK:
        ranking = sorted(RankAnswer.model_validate(answer).ranking, key=lambda item: item.rank)
        return " → ".join(item.id for item in ranking)

    if question_type == QuestionType.RATE:
        ratings = RateAnswer.model_validate(answer).ratings
        if not ratings:
            return "no ratings"
        top = sorted(ratings.items(), key=lambda kv: kv[1], reverse=True)[:3]
        return ", ".join(f"{key}: {_number(value)}" for key, value in top)

    if question_type == QuestionType.ASK_CODE:
        return truncate_text(AskCodeAnswer.model_validate(answer).code)

    if question_type in (QuestionType.ASK_IMAGE, QuestionType.ASK_FILE):
        return "file(s) uploaded"

    if question_type in (QuestionType.SHOW_DIFF, QuestionType.SHOW_PLAN, QuestionType.REVIEW_SECTION):
        review = ReviewAnswer.model_validate(answer)
        if review.feedback:
            return f"{review.decision}: {truncate_text(review.feedback)}"
        return review.decision

    if question_type == QuestionType.SHOW_OPTIONS:
        chosen = ShowOptionsAnswer.model_validate(answer)
        if chosen.feedback:
            return f"{chosen.selected}: {truncate_text(chosen.feedback)}"
        return chosen.selected

    return _generic_summary(answer)


def _generic_summary(answer: Any) -> str:
    if isinstance(answer, str):
        return truncate_text(answer)
    try:
        return truncate_text(json.dumps(answer, sort_keys=True, default=str))
    except (TypeError, ValueError):
        return truncate_text(str(answer))


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _confirm_choice(answer: Any) -> Optional[str]:
    try:
        return ConfirmAnswer.model_validate(answer).choice
    except ValidationError:
        return None


def priority_options(scope: str) -> List[Dict[str, str]]:
    """Options for the "what matters most" follow-up, chosen by scope keywords"""

    scope = scope.lower()
    for keywords, options in SCOPE_PRIORITIES:
        if any(keyword in scope for keyword in keywords):
            return [dict(option) for option in options]
    return [dict(option) for option in DEFAULT_PRIORITIES]


def _contextual_follow_up(branch: Branch, answered: List[BranchQuestion]) -> Optional[ProposedQuestion]:
    if len(answered) == 1:
        chosen = extract_answer_summary(answered[0].type, answered[0].answer)
        return ProposedQuestion(
            type=QuestionType.PICK_ONE,
            config={
                "question": f'What\'s most important for "{chosen}"?',
                "options": priority_options(branch.scope),
            },
        )

    if len(answered) == 2:
        return ProposedQuestion(
            type=QuestionType.CONFIRM,
            config={
                "question": f'Is the direction clear for "{branch.scope}"?',
                "context": "Yes = we have enough info. No = let's discuss more.",
            },
        )

    return None
