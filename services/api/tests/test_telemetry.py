from prometheus_client import REGISTRY

from app.telemetry import record_answer, record_failure


def _answers(outcome):
    return REGISTRY.get_sample_value("docqa_answers_total", {"outcome": outcome}) or 0.0


def test_answers_are_counted_by_outcome():
    before = {outcome: _answers(outcome) for outcome in ("generated", "cached", "conversational", "no_context")}
    confidence_count = REGISTRY.get_sample_value("docqa_answer_confidence_count") or 0.0

    record_answer(cached=False, conversational=False, confidence=0.9, grounded=True)
    record_answer(cached=True, conversational=False, confidence=0.9, grounded=True)
    record_answer(cached=False, conversational=True, confidence=0.0, grounded=False)
    record_answer(cached=False, conversational=False, confidence=0.0, grounded=False)

    for outcome, value in before.items():
        assert _answers(outcome) == value + 1
    assert REGISTRY.get_sample_value("docqa_answer_confidence_count") == confidence_count + 1


def test_failures_are_counted_by_error_code():
    before = _answers("generation_error")
    record_failure("GENERATION_ERROR")
    assert _answers("generation_error") == before + 1
