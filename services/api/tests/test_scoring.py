import pytest

from docqa_shared import RetrievedChunk, confidence_label, confidence_score


def test_confidence_stays_in_unit_interval_and_never_decreases():
    previous = -1.0
    for step in range(0, 1001):
        similarity = step / 1000
        value = confidence_score(similarity)
        assert 0.0 <= value <= 1.0
        assert value >= previous
        previous = value


@pytest.mark.parametrize(
    "similarity, expected",
    [
        (1.0, 1.0),
        (0.95, 0.975),
        (0.9, 0.95),
        (0.85, 0.9),
        (0.8, 0.85),
        (0.75, 0.775),
        (0.7, 0.7),
        (0.5, 0.45),
        (0.0, 0.0),
    ],
)
def test_confidence_tiers(similarity, expected):
    assert confidence_score(similarity) == pytest.approx(expected)


def test_negative_similarity_is_floored_at_zero():
    assert confidence_score(-0.4) == 0.0


@pytest.mark.parametrize(
    "confidence, label",
    [(0.95, "high"), (0.8, "high"), (0.79, "medium"), (0.6, "medium"), (0.59, "low"), (0.0, "low")],
)
def test_default_labels(confidence, label):
    assert confidence_label(confidence) == label


def test_label_thresholds_are_tunable():
    assert confidence_label(0.7, high=0.65, medium=0.5) == "high"
    assert confidence_label(0.55, high=0.9, medium=0.5) == "medium"


def test_retrieved_chunk_confidence_is_derived_from_raw_score():
    chunk = RetrievedChunk(
        id="c1",
        content="text",
        raw_score=0.9,
        confidence=0.01,
        document_id="d1",
        document_title="Doc",
    )
    assert chunk.confidence == pytest.approx(0.95)
