import pytest

from crm_dedupe.similarity import calculate_similarity, is_similar_name, levenshtein_distance


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
    ],
)
def test_levenshtein_distance(a, b, expected):
    assert levenshtein_distance(a, b) == expected
    assert levenshtein_distance(b, a) == expected


def test_similarity_ignores_company_suffix():
    assert calculate_similarity("Acme Inc", "Acme Corp") == 1.0


def test_similarity_edges():
    assert calculate_similarity("", "") == 1.0
    assert calculate_similarity(None, None) == 1.0
    assert calculate_similarity("abc", "xyz") < 0.5
    assert calculate_similarity("abc", "") == 0.0


def test_similarity_is_ratio_of_edit_distance():
    assert calculate_similarity("Jon Smith", "John Smith") == pytest.approx(0.9)


@pytest.mark.parametrize("name", ["Acme Corp", "Jane Doe", "", "Zenith LLC"])
@pytest.mark.parametrize("threshold", [0.0, 0.5, 0.8, 1.0])
def test_name_is_always_similar_to_itself(name, threshold):
    assert is_similar_name(name, name, threshold) is True


def test_is_similar_name_default_threshold():
    assert is_similar_name("Acme Corporation", "ACME Corp.")
    assert not is_similar_name("Acme", "Zenith")
