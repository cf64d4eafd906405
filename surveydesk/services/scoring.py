"""Auto-grading of submitted answers against per-field correctness rules."""

from __future__ import annotations

from surveydesk.schemas.survey import SurveyField
from surveydesk.services.common import round_half_up
from surveydesk.services.validation import (
    ChoiceAnswer,
    MultiChoiceAnswer,
    NumberAnswer,
    TextAnswer,
    parse_answer,
)


def evaluate_field_correctness(field: SurveyField, value) -> bool:
    rule = field.correctness
    if rule is None:
        return False
    answer = parse_answer(field, value)
    if rule.mode == "text_exact":
        if not isinstance(answer, TextAnswer):
            return False
        return answer.text.strip().lower() == rule.expected_text.strip().lower()
    if rule.mode == "single_select_exact":
        return isinstance(answer, ChoiceAnswer) and answer.value == rule.expected_option_value
    if rule.mode == "multi_select_exact":
        if not isinstance(answer, MultiChoiceAnswer):
            return False
        return set(answer.values) == set(rule.expected_option_values)
    if rule.mode == "numeric_exact":
        if not isinstance(answer, NumberAnswer):
            return False
        return abs(answer.value - rule.expected_number) <= rule.tolerance
    return False


def grade_submission(fields: list[SurveyField], answers: dict) -> dict:
    """Grade every field that carries a correctness rule.

    Fields without a rule are not gradable. Missing answers on gradable
    fields count as incorrect.
    """
    gradable = [field for field in fields if field.correctness is not None]
    field_results: dict[str, dict] = {}
    correct_count = 0
    for field in gradable:
        is_correct = evaluate_field_correctness(field, answers.get(field.id))
        field_results[field.id] = {"is_correct": is_correct}
        if is_correct:
            correct_count += 1

    gradable_count = len(gradable)
    score_percent = 0.0
    if gradable_count:
        score_percent = round_half_up(correct_count / gradable_count * 10000) / 100
    return {
        "gradable_count": gradable_count,
        "correct_count": correct_count,
        "incorrect_count": max(0, gradable_count - correct_count),
        "score_percent": score_percent,
        "field_results": field_results,
    }
