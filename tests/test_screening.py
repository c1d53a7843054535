import pytest

from companion.screening import screen


def test_detects_every_keyword_in_any_case(policy):
    for keyword in policy.crisis_keywords:
        for variant in (keyword, keyword.upper(), keyword.title()):
            result = screen(f"lately I feel like {variant}, honestly", policy.crisis_keywords)
            assert result.detected, variant
            assert keyword in result.keywords


@pytest.mark.parametrize(
    "text",
    [
        "Hello",
        "I had a rough day at the clinic but my sister visited.",
        "",
        "Dying my hair blue tomorrow",
    ],
)
def test_clean_text_is_not_flagged(policy, text):
    result = screen(text, policy.crisis_keywords)
    assert result.detected is False
    assert result.keywords == []


def test_collects_all_matches_in_list_order(policy):
    result = screen("I am going to die, I might overdose", policy.crisis_keywords)
    assert result.keywords == ["going to die", "am going to die", "overdose"]


def test_end_my_life(policy):
    result = screen("I want to end my life", policy.crisis_keywords)
    assert result.detected
    assert "end my life" in result.keywords


def test_no_negation_handling(policy):
    # Surrounding words never cancel a match
    result = screen("I would never kill myself", policy.crisis_keywords)
    assert result.keywords == ["kill myself"]


def test_screen_is_pure():
    keywords = ["give up", "suicide"]
    first = screen("Don't GIVE UP", keywords)
    second = screen("Don't GIVE UP", keywords)
    assert first == second
    assert keywords == ["give up", "suicide"]
