import pytest

from quizplatform.similarity import is_match, jaccard, levenshtein, normalize_text, similarity_score, tokenize


def test_normalize_text_trims_lowercases_and_strips_punctuation():
    assert normalize_text("  The   Mitochondria!  ") == "the mitochondria"
    assert normalize_text("rock-and-roll") == "rockandroll"


def test_tokenize_drops_stop_words():
    assert tokenize("the cat and the hat") == ["cat", "hat"]


def test_levenshtein_and_jaccard():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0
    assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
    assert jaccard(set(), set()) == 0.0


@pytest.mark.parametrize(
    "candidate, reference",
    [
        ("the cat", "cat"),
        ("cats", "cat"),
        ("cities", "city"),
        ("boxes", "box"),
        ("Photosynthesis!", "photosynthesis"),
        ("blue red", "red blue"),
        ("big red dog", "red dog"),
        ("red orange yellow green blue violett", "red orange yellow green blue violet"),
    ],
)
def test_accepts_minor_variations(candidate, reference):
    assert is_match(candidate, reference, 0.80)


@pytest.mark.parametrize(
    "candidate, reference",
    [
        ("dog", "cat"),
        ("", "cat"),
        ("cat", ""),
        (None, "cat"),
        ("of", "on"),
        ("the quick brown fox", "a lazy sleeping dog"),
        ("big angry red dog", "red dog"),
    ],
)
def test_rejects_different_answers(candidate, reference):
    assert not is_match(candidate, reference, 0.80)


def test_threshold_controls_blended_acceptance():
    candidate = "red orange yellow green blue violett"
    reference = "red orange yellow green blue violet"
    assert is_match(candidate, reference, 0.80)
    assert not is_match(candidate, reference, 0.95)


def test_similarity_score_bounds():
    assert similarity_score("Cat", "cat") == 1.0
    assert similarity_score("dog", "cat") == 0.0
    assert 0.0 < similarity_score("red dog", "red cat") < 1.0
