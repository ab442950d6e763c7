"""Heuristic intent and preference extraction from chat text.

should_search() is the single gate in front of the Matcher. It is keyword based
and deliberately fuzzy; swap it for a classifier without touching the advisor.
"""

import re
from typing import Iterable, List, Optional

from .config import MILES_TO_KM
from .models import ConversationMessage, SavedPreferences

SPORTS = ("soccer", "basketball", "baseball", "volleyball", "football", "hockey", "softball", "lacrosse")

# Words in the user's message that ask for, or agree to, seeing offers
DISCOVERY_PATTERN = re.compile(
    r"\b(show|find|search|recommend\w*|suggest\w*|options?|compare|match(?:es)?|"
    r"looking for|any teams|which teams|yes|yeah|yep|sure|ok|okay|perfect|sounds good)\b",
    re.I,
)

# Phrases the assistant uses when it announces a search on the next turn
SEARCH_ANNOUNCEMENTS = (
    "let me see",
    "searching",
    "let me find",
    "give me just a moment",
    "i'll find",
    "let me look",
)

PREFERENCES_QUESTION = re.compile(
    r"current preferences|my preferences|what.*preferences|show.*preferences", re.I
)

# Five digits that are not part of a dollar amount ("$10000", "25,000", "50000k")
ZIP_PATTERN = re.compile(r"(?<![\d$,.])\b\d{5}(?:-\d{4})?\b(?![,.]?\d|\s?k\b)", re.I)
# A five-digit number in the same clause as one of these is an amount
MONEY_WORDS = re.compile(
    r"\b(spend\w*|budget\w*|pay\w*|invest\w*|afford|cost\w*|price\w*|dollars?|usd|bucks)\b", re.I
)
MONEY_SUFFIX = re.compile(r"\s*(dollars?|usd|bucks)\b", re.I)

_AMOUNT = r"\$?\s?(\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)\s?(k\b)?"
BUDGET_RANGE = re.compile(_AMOUNT + r"\s*(?:to|-|and)\s*" + _AMOUNT, re.I)
SINGLE_AMOUNT = re.compile(_AMOUNT, re.I)
RADIUS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(km|kilomet(?:er|re)s?|mi\b|miles?)", re.I)


def should_search(user_text: str, history: Iterable[ConversationMessage] = ()) -> bool:
    """True when this turn should query the Matcher."""
    if DISCOVERY_PATTERN.search(user_text):
        return True

    history = list(history)
    previous_assistant = [m for m in history if m.role == "assistant"]
    if previous_assistant:
        last = previous_assistant[-1].content.lower()
        if any(phrase in last for phrase in SEARCH_ANNOUNCEMENTS):
            return True

    # Enough gathered: budget, location and sport topics all came up
    text = " ".join(m.content for m in history).lower()
    asked_budget = "budget" in text or "how much" in text or "$" in text
    asked_location = "location" in text or "where" in text or "zip" in text
    asked_sport = "sport" in text or any(s in text for s in SPORTS)
    return asked_budget and asked_location and asked_sport


def asks_for_preferences(user_text: str) -> bool:
    return bool(PREFERENCES_QUESTION.search(user_text))


def _zip_matches(text: str) -> List[re.Match]:
    matches = []
    for match in ZIP_PATTERN.finditer(text):
        clause = re.split(r"[\d.,;!?]", text[: match.start()])[-1]
        if MONEY_WORDS.search(clause) or MONEY_SUFFIX.match(text, match.end()):
            continue
        matches.append(match)
    return matches


def extract_zip_code(text: str) -> Optional[str]:
    matches = _zip_matches(text)
    return matches[0].group(0) if matches else None


def _to_amount(number: str, thousands: Optional[str]) -> float:
    value = float(number.replace(",", ""))
    return value * 1000 if thousands else value


def _sports_in(text: str) -> List[str]:
    return [s.capitalize() for s in SPORTS if re.search(rf"\b{s}\b", text)]


def extract_preferences(user_text: str, conversation_text: str = "") -> SavedPreferences:
    """Pull budget, sports and radius out of the latest message.

    Sports come from the latest message, or from earlier ones when it names
    none. Budget and radius only come from the latest message. Fields not
    mentioned stay None.
    """
    text = user_text.lower()
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    mentions_money = "$" in text or "budget" in text or "spend" in text

    # Radius numbers and postal codes must not be read as budget amounts
    money_text = RADIUS_PATTERN.sub(" ", text)
    for match in reversed(_zip_matches(money_text)):
        money_text = money_text[: match.start()] + " " + money_text[match.end() :]

    range_match = BUDGET_RANGE.search(money_text)
    if range_match and mentions_money:
        low = _to_amount(range_match.group(1), range_match.group(2) or range_match.group(4))
        high = _to_amount(range_match.group(3), range_match.group(4))
        budget_min, budget_max = min(low, high), max(low, high)
    elif mentions_money:
        single = SINGLE_AMOUNT.search(money_text)
        if single:
            budget_max = _to_amount(single.group(1), single.group(2))

    # Sports in the latest message replace ones mentioned earlier
    sports = _sports_in(text) or _sports_in(conversation_text.lower())

    radius_km: Optional[float] = None
    radius_match = RADIUS_PATTERN.search(text)
    if radius_match:
        value = float(radius_match.group(1))
        unit = radius_match.group(2).lower()
        radius_km = value * MILES_TO_KM if unit.startswith("mi") else value

    return SavedPreferences(
        sports=tuple(sports) if sports else None,
        budget_min=budget_min,
        budget_max=budget_max,
        radius_km=radius_km,
    )
