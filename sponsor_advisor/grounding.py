"""Response grounding: fixed replies and the post-generation gate.

Generated text may only name teams and prices present in the current turn's
candidate list. Dollar amounts the user supplied (budgets) are allowed too.
"""

import math
import re
from typing import Iterable, List, Optional, Sequence

from .errors import ContractViolation
from .models import CandidatePackage
from .utils import format_money

ZERO_RESULTS_MESSAGE = (
    "I couldn't find any teams matching those criteria right now. "
    "Want to try a different location, budget, or sport?"
)
LOCATION_PROMPT_MESSAGE = "To find teams near you, what's your zip code?"
GEOCODE_FAILED_MESSAGE = (
    "I'm having trouble finding that zip code. Could you double-check it? "
    "Or you can provide your city and state instead."
)
CLARIFY_MESSAGE = "Happy to help you find the right team to sponsor. What budget range do you have in mind?"

CURRENCY_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)(?:\s?(k)\b)?", re.I)

# Claims of results are only allowed when the turn has candidates
RESULT_CLAIM_PATTERN = re.compile(
    r"\b(i|we)(?:'ve| have)? (found|located|pulled up)\b|\bhere (are|is) (the |some |a few )?(teams?|options?|matches)\b",
    re.I,
)


def currency_amounts(text: str) -> List[float]:
    amounts = []
    for number, thousands in CURRENCY_PATTERN.findall(text):
        value = float(number.replace(",", ""))
        amounts.append(value * 1000 if thousands else value)
    return amounts


def mentioned_team_names(text: str, team_names: Iterable[str]) -> List[str]:
    lowered = text.lower()
    found = []
    for name in team_names:
        if name and re.search(rf"(?<!\w){re.escape(name.lower())}(?!\w)", lowered):
            found.append(name)
    return found


def _is_allowed_amount(amount: float, allowed: Sequence[float]) -> bool:
    return any(math.isclose(amount, a, abs_tol=0.01) for a in allowed)


def find_violations(
    text: str,
    candidates: Sequence[CandidatePackage],
    known_team_names: Iterable[str],
    user_amounts: Iterable[float] = (),
) -> List[str]:
    """Return a description of every ungrounded reference in text (empty when clean)."""
    violations = []
    candidate_names = {c.team_name.lower() for c in candidates}

    # Blank out candidate names first so a shorter known name inside one is not flagged
    scrubbed = text
    for name in sorted(candidate_names, key=len, reverse=True):
        scrubbed = re.sub(re.escape(name), " ", scrubbed, flags=re.I)
    for name in mentioned_team_names(scrubbed, known_team_names):
        if name.lower() not in candidate_names:
            violations.append(f"team not in this turn's results: {name}")

    allowed: List[float] = [a for a in user_amounts if a is not None]
    for c in candidates:
        allowed.append(c.price)
        if c.estimated_cost_per_fan is not None:
            allowed.append(c.estimated_cost_per_fan)
            allowed.append(round(c.estimated_cost_per_fan, 2))
    for amount in currency_amounts(text):
        if not _is_allowed_amount(amount, allowed):
            violations.append(f"unsupported amount: {format_money(amount)}")

    if not candidates and RESULT_CLAIM_PATTERN.search(text):
        violations.append("claims results without any candidates")

    return violations


def summarize_candidates(candidates: Sequence[CandidatePackage]) -> str:
    """Deterministic reply built only from candidate fields."""
    top = candidates[0]
    count = len(candidates)
    noun = "team" if count == 1 else "teams"
    return (
        f"I found {count} {noun} for you! The closest is {top.team_name}, "
        f"{top.distance_km:.1f}km away with {top.total_reach:,} reach for {format_money(top.price)}. "
        "Want to check out the full details?"
    )


def fallback_reply(candidates: Sequence[CandidatePackage]) -> str:
    return summarize_candidates(candidates) if candidates else CLARIFY_MESSAGE


def assert_grounded(
    text: str,
    candidates: Sequence[CandidatePackage],
    known_team_names: Iterable[str],
    user_amounts: Iterable[float] = (),
    searched: bool = False,
    fixed_reply: Optional[str] = None,
) -> None:
    """Final check on an assembled reply. Raises ContractViolation on any breach."""
    if searched and not candidates:
        if fixed_reply is None or text != fixed_reply:
            raise ContractViolation("reply for an empty search must be the fixed template")
        return
    violations = find_violations(text, candidates, known_team_names, user_amounts)
    if violations:
        raise ContractViolation("; ".join(violations))
