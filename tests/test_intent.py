"""Search-intent and preference extraction tests."""

from __future__ import annotations

import pytest

from sponsor_advisor.intent import asks_for_preferences, extract_preferences, extract_zip_code, should_search
from sponsor_advisor.models import ConversationMessage


@pytest.mark.parametrize(
    "text",
    ["Can you show me some teams?", "find soccer sponsorships", "Yes please", "Any recommendations nearby?"],
)
def test_discovery_vocabulary_triggers_search(text) -> None:
    assert should_search(text) is True


@pytest.mark.parametrize("text", ["Hi, I own a bakery.", "We care about community impact", "thanks!"])
def test_small_talk_does_not_search(text) -> None:
    assert should_search(text) is False


def test_previous_search_announcement_triggers_search() -> None:
    history = [
        ConversationMessage.create("user", "I want to help local kids"),
        ConversationMessage.create("assistant", "Great, let me find a few teams for you."),
    ]
    assert should_search("We're flexible on the sport", history) is True


def test_all_topics_covered_triggers_search() -> None:
    history = [
        ConversationMessage.create("assistant", "What budget do you have?"),
        ConversationMessage.create("user", "$2,000"),
        ConversationMessage.create("assistant", "What's your zip code?"),
        ConversationMessage.create("user", "08540"),
        ConversationMessage.create("assistant", "Which sport do you like?"),
    ]
    assert should_search("basketball", history) is True


def test_budget_range_extracted() -> None:
    prefs = extract_preferences("Our budget is $2,000 to $4,000 for soccer")
    assert (prefs.budget_min, prefs.budget_max) == (2000, 4000)
    assert prefs.sports == ("Soccer",)


def test_reversed_range_is_normalized() -> None:
    prefs = extract_preferences("budget $5k - $1k")
    assert (prefs.budget_min, prefs.budget_max) == (1000, 5000)


def test_single_amount_is_max_budget() -> None:
    prefs = extract_preferences("We can spend around 5k")
    assert prefs.budget_min is None
    assert prefs.budget_max == 5000


def test_numbers_without_money_words_are_ignored() -> None:
    prefs = extract_preferences("I have 5 kids who play hockey")
    assert prefs.budget_max is None
    assert prefs.sports == ("Hockey",)


def test_radius_and_zip_are_not_budget() -> None:
    prefs = extract_preferences("budget $1,500, within 25 miles of 08540")
    assert prefs.budget_max == 1500
    assert prefs.radius_km == pytest.approx(25 * 1.609344)


def test_five_digit_budget_is_kept() -> None:
    prefs = extract_preferences("We can spend 10000 on soccer sponsorships")
    assert prefs.budget_max == 10000
    assert prefs.sports == ("Soccer",)


def test_zip_next_to_budget_is_not_an_amount() -> None:
    prefs = extract_preferences("Our budget is 2000 and we are in 08540")
    assert prefs.budget_max == 2000


def test_radius_in_km() -> None:
    assert extract_preferences("within 40 km").radius_km == 40


def test_sports_from_earlier_messages_count() -> None:
    prefs = extract_preferences("what about nearby?", "we love baseball")
    assert prefs.sports == ("Baseball",)


def test_nothing_found_is_empty() -> None:
    assert extract_preferences("hello there").is_empty()


@pytest.mark.parametrize(
    "text,expected",
    [
        ("I'm at 08540", "08540"),
        ("zip 10001-1234 please", "10001-1234"),
        ("budget $10000", None),
        ("about 25,000 dollars", None),
        ("no zip here", None),
        ("we can spend 10000", None),
        ("Show me soccer teams, budget of 15000", None),
        ("around 20000 dollars", None),
        ("budget is 2000 and we are in 08540", "08540"),
    ],
)
def test_extract_zip_code(text, expected) -> None:
    assert extract_zip_code(text) == expected


def test_asks_for_preferences() -> None:
    assert asks_for_preferences("What are my preferences?")
    assert not asks_for_preferences("Show me teams")
