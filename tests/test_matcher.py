import pytest

from approver.matcher import match, match_any


@pytest.mark.parametrize(
    "pattern,value,expected",
    [
        ("*", "anything", True),
        ("*", "", True),
        (None, "anything", True),
        ("test-name", "test-name", True),
        ("test-name", "test-name-2", False),
        ("test-*", "test-name", True),
        ("test-*", "other", False),
        ("*-kind", "test-kind", True),
        ("*-kind", "test-kinds", False),
        ("*up", "test-group", True),
        ("a*b*c", "a-bb-c", True),
        ("a*b*c", "acb", False),
        ("ab*ba", "aba", False),
        ("*mid*", "in-the-middle", True),
        ("Test-*", "test-name", False),
        ("test-?", "test-a", False),
        ("test-[ab]", "test-a", False),
        ("test-[ab]", "test-[ab]", True),
    ],
)
def test_match(pattern, value, expected):
    assert match(pattern, value) is expected


def test_match_any_ors_patterns():
    assert match_any(["foo", "test-*"], "test-namespace")
    assert not match_any(["foo", "bar"], "test-namespace")
    assert not match_any([], "test-namespace")
