"""Answer validation against field definitions.

Raw answer values arrive as JSON scalars or string lists keyed by field id.
``parse_answer`` turns one into a typed answer according to the field's kind;
``validate_answer`` applies presence, type and constraint rules and returns a
human readable error or ``None``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from pydantic import TypeAdapter, ValidationError

from surveydesk.schemas.survey import FieldKind, SurveyField
from surveydesk.services.common import round_half_up
from surveydesk.services.errors import SurveyValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_STRING_KINDS = {
    FieldKind.short_text,
    FieldKind.long_text,
    FieldKind.single_select,
    FieldKind.email,
    FieldKind.date,
}

_FIELD_LIST = TypeAdapter(list[SurveyField])


@dataclass(frozen=True)
class TextAnswer:
    text: str


@dataclass(frozen=True)
class ChoiceAnswer:
    value: str


@dataclass(frozen=True)
class MultiChoiceAnswer:
    values: tuple[str, ...]


@dataclass(frozen=True)
class NumberAnswer:
    value: float


Answer = TextAnswer | ChoiceAnswer | MultiChoiceAnswer | NumberAnswer


@dataclass(frozen=True)
class Progress:
    answered_count: int
    required_answered_count: int
    required_count: int
    progress_percent: int


def is_answer_present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, list | tuple):
        return len(value) > 0
    return True


def _is_number(value) -> bool:
    # bool is an int subclass but never a valid numeric answer.
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def parse_answer(field: SurveyField, value) -> Answer | None:
    """Return the typed answer for ``value`` or ``None`` when absent or mistyped."""
    if not is_answer_present(value):
        return None
    if field.kind in _STRING_KINDS:
        if not isinstance(value, str):
            return None
        if field.kind == FieldKind.single_select:
            return ChoiceAnswer(value)
        return TextAnswer(value)
    if field.kind == FieldKind.multi_select:
        if not isinstance(value, list | tuple) or not all(isinstance(entry, str) for entry in value):
            return None
        return MultiChoiceAnswer(tuple(value))
    if _is_number(value):
        return NumberAnswer(float(value))
    return None


def validate_answer(field: SurveyField, value) -> str | None:
    if not is_answer_present(value):
        return "This field is required." if field.required else None

    rules = field.validation
    option_values = {option.value for option in field.options or []}
    answer = parse_answer(field, value)

    if field.kind in _STRING_KINDS:
        if answer is None:
            return "Expected a string."
        if field.kind == FieldKind.email and not _EMAIL_RE.match(value):
            return "Invalid email format."
        # Blank option sets are tolerated for legacy fields.
        if field.kind == FieldKind.single_select and option_values and value not in option_values:
            return "Invalid option selected."
        if rules is not None:
            if rules.min_length is not None and len(value) < rules.min_length:
                return f"Minimum length is {rules.min_length}."
            if rules.max_length is not None and len(value) > rules.max_length:
                return f"Maximum length is {rules.max_length}."
            if rules.pattern and not re.search(rules.pattern, value):
                return "Value does not match pattern."
        return None

    if field.kind == FieldKind.multi_select:
        if answer is None:
            return "Expected an array of strings."
        if option_values and any(entry not in option_values for entry in answer.values):
            return "One or more selected options are invalid."
        return None

    if answer is None:
        return "Expected a number."
    number = answer.value
    if field.kind == FieldKind.rating_1_5 and (number < 1 or number > 5):
        return "Rating must be between 1 and 5."
    if rules is not None:
        if rules.min is not None and number < rules.min:
            return f"Minimum value is {_format_bound(rules.min)}."
        if rules.max is not None and number > rules.max:
            return f"Maximum value is {_format_bound(rules.max)}."
    return None


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def require_valid_answer(field: SurveyField, value) -> None:
    error = validate_answer(field, value)
    if error:
        raise SurveyValidationError("INVALID_ANSWER", error, field_id=field.id)


def calculate_progress(fields: list[SurveyField], answers: dict) -> Progress:
    required_count = sum(1 for field in fields if field.required)
    answered_count = 0
    required_answered_count = 0
    for field in fields:
        if is_answer_present(answers.get(field.id)):
            answered_count += 1
            if field.required:
                required_answered_count += 1

    if required_count > 0:
        numerator, denominator = required_answered_count, required_count
    else:
        numerator, denominator = answered_count, len(fields) or 1
    return Progress(
        answered_count=answered_count,
        required_answered_count=required_answered_count,
        required_count=required_count,
        progress_percent=round_half_up(numerator / denominator * 100),
    )


def parse_survey_fields(raw_fields: list) -> list[SurveyField]:
    """Validate a draft's field list and return it sorted by order.

    Every problem is reported as ``INVALID_FIELDS``.
    """
    try:
        fields = _FIELD_LIST.validate_python(raw_fields)
    except ValidationError as exc:
        raise SurveyValidationError("INVALID_FIELDS", _summarize(exc)) from exc
    if not fields:
        raise SurveyValidationError("INVALID_FIELDS", "At least one field is required.")
    if len(fields) > 200:
        raise SurveyValidationError("INVALID_FIELDS", "A survey can have at most 200 fields.")

    seen: set[str] = set()
    for field in fields:
        if field.id in seen:
            raise SurveyValidationError("INVALID_FIELDS", f"Duplicate field id: {field.id}")
        seen.add(field.id)

    ordered = sorted(fields, key=lambda field: field.order)
    for index, field in enumerate(ordered):
        if field.order != index:
            raise SurveyValidationError("INVALID_FIELDS", "Field order must be contiguous and start at 0.")
    return ordered


def load_fields(stored: list) -> list[SurveyField]:
    """Rehydrate a persisted version's fields, ordered by position."""
    return sorted(_FIELD_LIST.validate_python(stored or []), key=lambda field: field.order)


def _summarize(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors()[:5]:
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid"))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid survey fields."
