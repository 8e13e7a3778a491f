import pytest

from app.services.reranker import query_terms, rerank

from fakes import make_chunk


def test_short_terms_are_ignored():
    assert query_terms("What is AI in the EU") == ["what", "the"]


def test_term_overlap_and_first_chunk_boost():
    plain = make_chunk("plain", raw_score=0.5, content="nothing relevant here", position=3)
    overlap = make_chunk("overlap", raw_score=0.5, content="Quarterly revenue grew strongly", position=3)
    intro = make_chunk("intro", raw_score=0.5, content="nothing relevant here", position=0)

    ranked = rerank([plain, intro, overlap], "quarterly revenue")

    assert [chunk.id for chunk in ranked] == ["overlap", "intro", "plain"]
    assert ranked[0].confidence == pytest.approx(0.45 + 2 * 0.02)
    assert ranked[1].confidence == pytest.approx(0.45 + 0.01)
    assert ranked[2].confidence == pytest.approx(0.45)


def test_confidence_is_clamped_after_boosting():
    chunk = make_chunk("top", raw_score=1.0, content="alpha beta gamma", position=0)
    (ranked,) = rerank([chunk], "alpha beta gamma")
    assert ranked.confidence == 1.0


def test_ties_keep_input_order_and_inputs_are_untouched():
    first = make_chunk("first", raw_score=0.6)
    second = make_chunk("second", raw_score=0.6)

    ranked = rerank([first, second], "unrelated")

    assert [chunk.id for chunk in ranked] == ["first", "second"]
    assert first.confidence == pytest.approx(0.54)
    assert ranked[0] is not first


def test_custom_boosts():
    chunk = make_chunk("c", raw_score=0.5, content="policy text", position=0)
    (ranked,) = rerank([chunk], "policy", term_boost=0.1, first_chunk_boost=0.05)
    assert ranked.confidence == pytest.approx(0.45 + 0.1 + 0.05)


def test_min_term_length_controls_which_terms_boost():
    chunk = make_chunk("c", raw_score=0.5, content="the eu ai act", position=3)
    (default,) = rerank([chunk], "eu ai act")
    (strict,) = rerank([chunk], "eu ai act", min_term_length=1)
    assert default.confidence == pytest.approx(0.45 + 0.02)
    assert strict.confidence == pytest.approx(0.45 + 3 * 0.02)
