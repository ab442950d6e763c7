"""Grounding gate tests."""

from __future__ import annotations

import pytest

from sponsor_advisor.errors import ContractViolation
from sponsor_advisor.grounding import (
    CLARIFY_MESSAGE,
    ZERO_RESULTS_MESSAGE,
    assert_grounded,
    currency_amounts,
    fallback_reply,
    find_violations,
    mentioned_team_names,
)
from sponsor_advisor.models import CandidatePackage

KNOWN = {"Eastside United", "Harbor Hoopers", "Northfield FC", "Eagles"}


def _candidate(team_name: str, price: float, reach: int = 1000, offer_id: str = "o1") -> CandidatePackage:
    return CandidatePackage(
        team_profile_id="t1",
        team_name=team_name,
        sport="Soccer",
        distance_km=12.0,
        total_reach=reach,
        sponsorship_offer_id=offer_id,
        package_id="p1",
        package_name="Jersey Logo",
        price=price,
        estimated_cost_per_fan=price / reach if reach else None,
        marketplace_url=f"https://market.test/{offer_id}",
    )


def test_currency_amounts_parses_common_forms() -> None:
    assert currency_amounts("$3,000 or $2.50 per fan, maybe $5k") == [3000, 2.5, 5000]
    assert currency_amounts("no money here, 3000 fans") == []


def test_team_names_match_whole_words_only() -> None:
    assert mentioned_team_names("Go eagles!", KNOWN) == ["Eagles"]
    assert mentioned_team_names("The Eaglesmith shop", KNOWN) == []


def test_grounded_reply_passes() -> None:
    candidates = [_candidate("Eastside United", 3000, reach=1500)]
    text = "I found 1 team! Eastside United is 12.0km away for $3,000, about $2 per fan."
    assert find_violations(text, candidates, KNOWN) == []


def test_unknown_team_is_flagged() -> None:
    candidates = [_candidate("Eastside United", 3000)]
    violations = find_violations("Eastside United or Harbor Hoopers would work.", candidates, KNOWN)
    assert violations == ["team not in this turn's results: Harbor Hoopers"]


def test_known_name_inside_candidate_name_is_not_flagged() -> None:
    candidates = [_candidate("Eagles Youth Soccer", 800)]
    assert find_violations("Eagles Youth Soccer costs $800.", candidates, KNOWN) == []


def test_invented_price_is_flagged() -> None:
    candidates = [_candidate("Eastside United", 3000)]
    assert find_violations("Eastside United costs $2,500.", candidates, KNOWN) == ["unsupported amount: $2,500"]


def test_user_budget_may_be_repeated() -> None:
    assert find_violations("With $5,000 to spend, what sport do you like?", [], KNOWN, [5000]) == []


def test_result_claim_without_candidates_is_flagged() -> None:
    assert find_violations("I found some great options for you!", [], KNOWN) == [
        "claims results without any candidates"
    ]


def test_fallback_reply_uses_only_candidate_fields() -> None:
    candidates = [_candidate("Eastside United", 3000, offer_id="o1"), _candidate("Northfield FC", 2000, offer_id="o2")]
    text = fallback_reply(candidates)
    assert text.startswith("I found 2 teams for you! The closest is Eastside United, 12.0km away")
    assert "$3,000" in text
    assert find_violations(text, candidates, KNOWN) == []


def test_fallback_without_candidates_asks_a_question() -> None:
    assert fallback_reply([]) == CLARIFY_MESSAGE
    assert find_violations(CLARIFY_MESSAGE, [], KNOWN) == []


def test_zero_result_template_has_no_specifics() -> None:
    assert mentioned_team_names(ZERO_RESULTS_MESSAGE, KNOWN) == []
    assert currency_amounts(ZERO_RESULTS_MESSAGE) == []
    assert_grounded(ZERO_RESULTS_MESSAGE, [], KNOWN, searched=True, fixed_reply=ZERO_RESULTS_MESSAGE)


def test_empty_search_with_free_text_is_a_contract_violation() -> None:
    with pytest.raises(ContractViolation):
        assert_grounded("Sorry, nothing.", [], KNOWN, searched=True, fixed_reply=ZERO_RESULTS_MESSAGE)


def test_assert_grounded_raises_on_fabrication() -> None:
    with pytest.raises(ContractViolation):
        assert_grounded("Try Harbor Hoopers!", [_candidate("Eastside United", 3000)], KNOWN)
