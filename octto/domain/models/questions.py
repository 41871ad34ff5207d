from typing import Dict, Any, Optional, List, Type
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from enum import Enum

from octto.domain.errors import QuestionConfigError


class QuestionType(str, Enum):
    """Question types the UI knows how to render"""
    PICK_ONE = "pick_one"
    PICK_MANY = "pick_many"
    CONFIRM = "confirm"
    RANK = "rank"
    RATE = "rate"
    ASK_TEXT = "ask_text"
    ASK_IMAGE = "ask_image"
    ASK_FILE = "ask_file"
    ASK_CODE = "ask_code"
    SHOW_DIFF = "show_diff"
    SHOW_PLAN = "show_plan"
    SHOW_OPTIONS = "show_options"
    REVIEW_SECTION = "review_section"
    THUMBS = "thumbs"
    EMOJI_REACT = "emoji_react"
    SLIDER = "slider"


# Config payloads


class BaseConfig(BaseModel):
    """Fields every question config may carry; unknown keys pass through"""
    model_config = ConfigDict(extra="allow")

    question: Optional[str] = None
    context: Optional[str] = None


class Option(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    label: str
    description: Optional[str] = None


class PickOneConfig(BaseConfig):
    options: List[Option] = Field(default_factory=list)
    recommended: Optional[str] = None
    allow_other: Optional[bool] = None


class PickManyConfig(BaseConfig):
    options: List[Option] = Field(default_factory=list)
    recommended: Optional[List[str]] = None
    min: Optional[int] = None
    max: Optional[int] = None


class ConfirmConfig(BaseConfig):
    yes_label: Optional[str] = Field(None, alias="yesLabel")
    no_label: Optional[str] = Field(None, alias="noLabel")
    allow_cancel: Optional[bool] = Field(None, alias="allowCancel")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RankConfig(BaseConfig):
    options: List[Option] = Field(default_factory=list)


class RateConfig(BaseConfig):
    options: List[Option] = Field(default_factory=list)
    min: Optional[float] = None
    max: Optional[float] = None


class AskTextConfig(BaseConfig):
    placeholder: Optional[str] = None
    multiline: Optional[bool] = None


class SliderConfig(BaseConfig):
    min: float
    max: float
    step: Optional[float] = None
    default_value: Optional[float] = Field(None, alias="defaultValue")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


CONFIG_MODELS: Dict[QuestionType, Type[BaseConfig]] = {
    QuestionType.PICK_ONE: PickOneConfig,
    QuestionType.PICK_MANY: PickManyConfig,
    QuestionType.CONFIRM: ConfirmConfig,
    QuestionType.RANK: RankConfig,
    QuestionType.RATE: RateConfig,
    QuestionType.ASK_TEXT: AskTextConfig,
    QuestionType.SLIDER: SliderConfig,
}


def normalize_config(question_type: QuestionType, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate a config against the model for its question type.

    Types without a dedicated model are passed through as an opaque dict.

    Raises:
        QuestionConfigError: If the config does not fit the typed model
    """
    config = dict(config or {})
    model = CONFIG_MODELS.get(question_type, BaseConfig)

    try:
        parsed = model.model_validate(config)
    except ValidationError as e:
        raise QuestionConfigError(
            f"Invalid config for {question_type.value}: {e.error_count()} error(s)"
        ) from e

    return parsed.model_dump(by_alias=True, exclude_none=True)


def question_text(config: Optional[Dict[str, Any]], default: str = "Question") -> str:
    """Display string of a config, if it has one"""
    if isinstance(config, dict) and config.get("question") is not None:
        return str(config["question"])
    return default


# Answer payloads


class PickOneAnswer(BaseModel):
    selected: str
    other: Optional[str] = None


class PickManyAnswer(BaseModel):
    selected: List[str]
    other: Optional[List[str]] = None


class ConfirmAnswer(BaseModel):
    choice: str


class ThumbsAnswer(BaseModel):
    choice: str


class EmojiReactAnswer(BaseModel):
    emoji: str


class AskTextAnswer(BaseModel):
    text: str


class SliderAnswer(BaseModel):
    value: float


class RankItem(BaseModel):
    id: str
    rank: int


class RankAnswer(BaseModel):
    ranking: List[RankItem]


class RateAnswer(BaseModel):
    ratings: Dict[str, float]


class AskCodeAnswer(BaseModel):
    code: str
    language: Optional[str] = None


class ReviewAnswer(BaseModel):
    decision: str
    feedback: Optional[str] = None


class ShowOptionsAnswer(BaseModel):
    selected: str
    feedback: Optional[str] = None
