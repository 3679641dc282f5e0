import pytest

from prassist.config import PlanningConfig
from prassist.sizing import (
    ExecutionTier,
    assess_task_sizing,
    classify_task_sizing,
    closest_number_word,
    extract_requested_count,
    levenshtein_distance,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("rename three helpers", 3),
        ("update 12 endpoints", 12),
        ("twenty-five items", 25),
        ("nothing here", 0),
        ("add thirty two tests", 32),
        ("write fourten handlers", 14),
        ("add thre tests", 3),
        ("tweny widgets", 20),
        ("rename 3 helpers and eleven views", 11),
        ("bump version 1234", 0),
    ],
)
def test_extract_requested_count(text: str, expected: int) -> None:
    assert extract_requested_count(text) == expected


def test_closest_number_word_searches_every_number_word() -> None:
    assert closest_number_word("thre") == "three"
    assert closest_number_word("fourten") == "fourteen"
    assert closest_number_word("tweny") == "twenty"
    assert closest_number_word("readme") is None


def test_everyday_words_near_number_words_count() -> None:
    assert closest_number_word("for") == "four"
    assert closest_number_word("fix") == "six"
    assert extract_requested_count("fix it") == 6


def test_levenshtein_distance() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("same", "same") == 0


def test_short_prompt_small_context_is_tier_one() -> None:
    prompt = "Fix the typo in the README heading, please."
    assert len(prompt) < 60

    assert classify_task_sizing(prompt, "Files (first 200):\nREADME.md") is ExecutionTier.TIER_1


def test_long_refactor_with_count_and_large_context_is_tier_three() -> None:
    prompt = "Refactor the 10 payment handlers to share one retry helper. "
    prompt = (prompt * 20)[:700]

    decision = assess_task_sizing(prompt, "x" * 250_000)

    assert decision.tier is ExecutionTier.TIER_3
    assert decision.requested_count == 10
    assert {"long_prompt", "large_context", "count>=8", "scope_keyword"} <= set(decision.signals)


def test_count_bands_four_and_eight_weigh_the_same() -> None:
    four = assess_task_sizing("tweak 4 widgets", "")
    eight = assess_task_sizing("tweak 8 widgets", "")

    assert four.score == eight.score == 2
    assert four.tier is ExecutionTier.TIER_1


def test_scope_keyword_pushes_moderate_request_to_tier_two() -> None:
    decision = assess_task_sizing("create 5 fixtures", "")

    assert decision.score == 3
    assert decision.tier is ExecutionTier.TIER_2


def test_scope_keywords_match_inside_words() -> None:
    assert "scope_keyword" in assess_task_sizing("fix the small typo", "").signals
    assert "scope_keyword" in assess_task_sizing("an overall cleanup", "").signals
    assert "scope_keyword" not in assess_task_sizing("rename the module", "").signals


def test_tier_step_caps_follow_planning_config() -> None:
    planning = PlanningConfig()

    assert ExecutionTier.TIER_2.max_steps(planning) == 4
    assert ExecutionTier.TIER_3.max_steps(planning) == 8
    assert ExecutionTier.TIER_1.max_steps(planning) == 4
