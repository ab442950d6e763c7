# Prompts and context builders for the text generator.
from typing import Any, Dict, List, Optional, Sequence

from .models import BusinessProfile, CandidatePackage, SavedPreferences
from .utils import format_money

# System prompt for every advisor call.
ADVISOR_SYSTEM_PROMPT = (
    "You are a proactive sponsorship marketing manager helping a local business sponsor youth sports teams. "
    "You are enthusiastic, results-oriented and remember the user's saved preferences.\n\n"
    "Style:\n"
    "- Keep messages short: 2-3 sentences, under 100 words.\n"
    "- Ask ONE question at a time.\n"
    "- Sound natural and conversational. No bullet points, no lists, no JSON.\n"
    "- Use saved preferences as defaults and do not ask for things you already know.\n\n"
    "Grounding rules:\n"
    "- NEVER invent team names, prices, distances or sponsorship details.\n"
    "- Only teams listed in a system message for THIS turn exist. If none are listed, do not name any team "
    "and do not say you found anything.\n"
    "- Never say you are searching unless results are in your context.\n"
    "- If you lack information, ask one clarifying question about budget, sport or distance."
)

# Appended when the matcher returned candidates for this turn.
RECOMMENDATIONS_INSTRUCTIONS = (
    "INSTRUCTIONS:\n"
    "1. Present these conversationally; do NOT copy this message.\n"
    "2. Mention the top option with its team name, distance, price and reach exactly as written above.\n"
    "3. Say \"I found N teams\". Do not mention any team or price that is not listed above.\n"
    "4. Keep the reply under 100 words; the UI shows cards with full details.\n"
    "5. End with one question, e.g. which one interests them most."
)

PREFERENCES_SUMMARY_INSTRUCTION = (
    "The user asked to list their saved preferences. Summarize the known budget, sports and radius. "
    "Do NOT ask for them again. Keep it under 60 words."
)

NO_PREFERENCES_INSTRUCTION = (
    "No saved preferences exist yet. Say so politely and ask ONE clarifying question "
    "(zip code if the location is missing, otherwise budget)."
)

ACTION_LABELS = {
    "clicked": "viewed details of",
    "interested": "marked interested",
    "saved": "saved for later",
    "not_interested": "marked not interested",
}


def describe_preferences(preferences: Optional[SavedPreferences]) -> str:
    if preferences is None or preferences.is_empty():
        return "Not set"
    if preferences.budget_min is not None or preferences.budget_max is not None:
        budget = f"{format_money(preferences.budget_min or 0)} - "
        budget += format_money(preferences.budget_max) if preferences.budget_max is not None else "any"
    else:
        budget = "Not set"
    sports = ", ".join(preferences.sports) if preferences.sports else "Any"
    radius = f"{preferences.radius_km:g}km" if preferences.radius_km else "Not set"
    return f"Budget: {budget}; Sports: {sports}; Radius: {radius}"


def build_business_context(
    profile: Optional[BusinessProfile],
    preferences: Optional[SavedPreferences],
    past_actions: Sequence[Dict[str, Any]],
    location_missing: bool,
) -> str:
    """Business profile, saved preferences and feedback history as a system message.

    Past feedback is summarized by sport only: team names from earlier turns must
    not leak into this turn's reply.
    """
    lines = ["Business profile:"]
    if profile is not None:
        lines.append(f"- Name: {profile.business_name or 'Not set'}")
        lines.append(f"- Industry: {profile.industry or 'Not set'}")
        lines.append(f"- Location: {profile.city or '?'}, {profile.state or '?'}")
    else:
        lines.append("- Not set")
    lines.append(f"Saved preferences (use these as defaults): {describe_preferences(preferences)}")

    if past_actions:
        lines.append("Past feedback on recommendations:")
        for action in past_actions:
            label = ACTION_LABELS.get(action["action"], action["action"])
            lines.append(f"- {label} a {action.get('sport') or 'team'} sponsorship")

    if location_missing:
        lines.append(
            "LOCATION MISSING: the business has no coordinates yet. Ask for their zip code "
            "and do not suggest any teams."
        )
    return "\n".join(lines)


def build_recommendations_context(candidates: Sequence[CandidatePackage]) -> str:
    parts = [f"SYSTEM INSTRUCTION - DO NOT REPEAT THIS TEXT:\nYou have {len(candidates)} sponsorship opportunities available:"]
    for i, c in enumerate(candidates, start=1):
        parts.append(
            f"Option {i}:\n"
            f"- Team: {c.team_name}\n"
            f"- Sport: {c.sport or 'Not specified'}\n"
            f"- Distance: {c.distance_km:.1f}km from user\n"
            f"- Price: {format_money(c.price)}\n"
            f"- Reach: {c.total_reach} people\n"
            f"- Package: {c.package_name}\n"
            f"- Est. cost per fan: {format_money(round(c.estimated_cost_per_fan, 2)) if c.estimated_cost_per_fan is not None else 'N/A'}"
        )
    parts.append(RECOMMENDATIONS_INSTRUCTIONS)
    return "\n\n".join(parts)


def build_messages(
    business_context: str,
    history: List[Dict[str, str]],
    extra_system: Sequence[str] = (),
) -> List[Dict[str, str]]:
    messages = [
        {"role": "system", "content": ADVISOR_SYSTEM_PROMPT},
        {"role": "system", "content": business_context},
        *history,
    ]
    messages.extend({"role": "system", "content": text} for text in extra_system)
    return messages
