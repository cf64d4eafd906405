import enum
import re
from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from surveydesk.models.survey import SurveyStatus


class FieldKind(enum.Enum):
    short_text = "short_text"
    long_text = "long_text"
    single_select = "single_select"
    multi_select = "multi_select"
    number = "number"
    email = "email"
    date = "date"
    rating_1_5 = "rating_1_5"


TEXT_KINDS = {FieldKind.short_text, FieldKind.long_text}
SELECT_KINDS = {FieldKind.single_select, FieldKind.multi_select}
NUMERIC_KINDS = {FieldKind.number, FieldKind.rating_1_5}


class FieldOption(BaseModel):
    label: str = Field(min_length=1, max_length=200)
    value: str = Field(min_length=1, max_length=200)


class FieldValidationRules(BaseModel):
    min_length: int | None = Field(default=None, ge=0, le=10000)
    max_length: int | None = Field(default=None, ge=0, le=10000)
    min: float | None = None
    max: float | None = None
    pattern: str | None = Field(default=None, max_length=400)

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid pattern: {exc}") from exc
        return value


class TextExactRule(BaseModel):
    mode: Literal["text_exact"]
    expected_text: str = Field(min_length=1, max_length=1000)
    normalization: Literal["trim_lower"] = "trim_lower"


class SingleSelectExactRule(BaseModel):
    mode: Literal["single_select_exact"]
    expected_option_value: str = Field(min_length=1, max_length=200)


class MultiSelectExactRule(BaseModel):
    mode: Literal["multi_select_exact"]
    expected_option_values: list[Annotated[str, Field(min_length=1, max_length=200)]] = Field(
        min_length=1, max_length=100
    )


class NumericExactRule(BaseModel):
    mode: Literal["numeric_exact"]
    expected_number: float
    tolerance: float = Field(default=0.0, ge=0)


CorrectnessRule = Annotated[
    TextExactRule | SingleSelectExactRule | MultiSelectExactRule | NumericExactRule,
    Field(discriminator="mode"),
]


class SurveyField(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    kind: FieldKind
    label: str = Field(min_length=1, max_length=300)
    required: bool = False
    order: int = Field(ge=0)
    placeholder: str | None = Field(default=None, max_length=300)
    help_text: str | None = Field(default=None, max_length=600)
    options: list[FieldOption] | None = Field(default=None, max_length=100)
    validation: FieldValidationRules | None = None
    correctness: CorrectnessRule | None = None

    @model_validator(mode="after")
    def _check_kind_rules(self):
        if self.kind in SELECT_KINDS and not self.options:
            raise ValueError("Select fields must define at least one option.")
        rules = self.validation
        if rules is not None:
            if self.kind == FieldKind.rating_1_5 and (rules.min is not None or rules.max is not None):
                raise ValueError("Rating fields cannot override min/max constraints.")
            if rules.min_length is not None and rules.max_length is not None and rules.min_length > rules.max_length:
                raise ValueError("minLength cannot be greater than maxLength.")
            if rules.min is not None and rules.max is not None and rules.min > rules.max:
                raise ValueError("min cannot be greater than max.")

        rule = self.correctness
        if rule is None:
            return self
        if self.kind in {FieldKind.email, FieldKind.date}:
            raise ValueError("Correctness is not supported for email/date fields.")
        if self.kind in TEXT_KINDS and rule.mode != "text_exact":
            raise ValueError("Text fields require text_exact correctness mode.")
        option_values = {option.value for option in self.options or []}
        if self.kind == FieldKind.single_select:
            if rule.mode != "single_select_exact":
                raise ValueError("single_select fields require single_select_exact correctness mode.")
            if rule.expected_option_value not in option_values:
                raise ValueError("Correct option must be one of the configured options.")
        if self.kind == FieldKind.multi_select:
            if rule.mode != "multi_select_exact":
                raise ValueError("multi_select fields require multi_select_exact correctness mode.")
            if len(set(rule.expected_option_values)) != len(rule.expected_option_values):
                raise ValueError("Expected options must be unique.")
            if any(value not in option_values for value in rule.expected_option_values):
                raise ValueError("Expected options must be present in configured options.")
        if self.kind in NUMERIC_KINDS and rule.mode != "numeric_exact":
            raise ValueError("number/rating fields require numeric_exact correctness mode.")
        return self


class SurveySettings(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    show_progress_bar: bool | None = None


class SurveyCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=160)
    description: str | None = None


class SurveyUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: SurveyStatus | None = None


class SurveyVersionCreate(BaseModel):
    # Field definitions are checked by the service so every problem maps to INVALID_FIELDS.
    fields: list[dict]
    settings: SurveySettings = Field(default_factory=SurveySettings)


class SurveyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slug: str
    title: str
    description: str | None = None
    status: SurveyStatus
    current_version_id: UUID | None = None
    created_by_user_id: UUID
    created_at: datetime
    updated_at: datetime


class SurveyVersionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    published_at: datetime | None = None
    created_at: datetime
    field_count: int


class SurveyVersionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    survey_id: UUID
    version: int
    fields: list[SurveyField]
    settings: SurveySettings
    published_at: datetime | None = None
    created_at: datetime


class SurveyDetail(SurveyRead):
    versions: list[SurveyVersionSummary] = Field(default_factory=list)
    current_version: SurveyVersionRead | None = None
