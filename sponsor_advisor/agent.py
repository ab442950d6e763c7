"""Sponsorship advisor: one chat turn end to end.

Flow per turn:
1. Tentatively append the user message and persist it
2. Read preferences from the message, resolve the business location
3. should_search() decides whether the matcher runs
4. Generate a reply from the matcher's candidates (or conversationally) and
   pass it through the grounding gate; empty searches use a fixed template
5. Persist the assistant message, its recommendation records and the merged
   preferences

Any failure after step 1 removes the tentative message and the rows already
written for the turn before the error reaches the caller. A conversation the
failed turn created is deleted as well.

Entry points: SponsorshipAdvisor.handle_turn()
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Sequence, Tuple

from .config import (
    DEFAULT_BUDGET_MAX,
    DEFAULT_BUDGET_MIN,
    DEFAULT_RADIUS_KM,
    GROUNDING_MAX_ATTEMPTS,
    LLM_TIMEOUT_S,
    MAX_HISTORY_MESSAGES,
    MAX_RECOMMENDATIONS,
    STEP_TIMEOUT_S,
)
from .conversation import ConversationStore
from .errors import AdvisorError, ContractViolation, ConversationNotFoundError, InputError, TransientIOError
from .geocoder import AbstractGeocoder
from .grounding import (
    GEOCODE_FAILED_MESSAGE,
    LOCATION_PROMPT_MESSAGE,
    ZERO_RESULTS_MESSAGE,
    assert_grounded,
    currency_amounts,
    fallback_reply,
    find_violations,
)
from .intent import asks_for_preferences, extract_preferences, extract_zip_code, should_search
from .llm import AbstractTextGenerator
from .models import (
    USER_ACTIONS,
    AdvisorFilters,
    BusinessProfile,
    CandidatePackage,
    Conversation,
    ConversationMessage,
    Location,
    SavedPreferences,
    SearchCriteria,
    TurnResult,
)
from .prompts import (
    NO_PREFERENCES_INSTRUCTION,
    PREFERENCES_SUMMARY_INSTRUCTION,
    build_business_context,
    build_messages,
    build_recommendations_context,
)
from .recommender import RecommendationMatcher
from .repository import AbstractAdvisorRepository
from .utils import message_to_dict

logger = logging.getLogger(__name__)

POSITIVE_ACTIONS = ("clicked", "interested", "saved")


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


class SponsorshipAdvisor:
    """Advisor for one user. Turns on the same conversation run one at a time."""

    def __init__(
        self,
        user_id: str,
        store: ConversationStore,
        repository: AbstractAdvisorRepository,
        matcher: RecommendationMatcher,
        geocoder: AbstractGeocoder,
        generator: AbstractTextGenerator,
        step_timeout_s: float = STEP_TIMEOUT_S,
        llm_timeout_s: float = LLM_TIMEOUT_S,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.repository = repository
        self.matcher = matcher
        self.geocoder = geocoder
        self.generator = generator
        self.step_timeout_s = step_timeout_s
        self.llm_timeout_s = llm_timeout_s
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # Public operations

    async def handle_turn(
        self,
        conversation_id: Optional[str],
        user_text: str,
        filters: Optional[AdvisorFilters] = None,
    ) -> TurnResult:
        """Handle one turn of conversation and return the assistant reply."""
        text = (user_text or "").strip()
        if not text:
            raise InputError("Message is required.")
        if filters is not None:
            filters.validate()

        conversation_id, created = await self._ensure_conversation(conversation_id, filters)
        async with self._conversation_lock(conversation_id):
            return await self._run_turn(conversation_id, text, filters, created)

    async def load_conversation(self, conversation_id: str) -> Conversation:
        """Rebuild a conversation from persisted messages and recommendation records."""
        async with self._conversation_lock(conversation_id):
            row = await self._owned_conversation_row(conversation_id)
            messages = await self._call(self.repository.load_messages(conversation_id), "load messages")

        existing = self.store.get_by_id(conversation_id)
        conversation = Conversation(
            id=conversation_id,
            title=existing.title if existing else "New Conversation",
            messages=tuple(messages),
            preferences=SavedPreferences.from_dict(row.get("metadata", {}).get("preferences")),
            last_activity=row["last_activity"],
            server_conversation_id=conversation_id,
        )
        self.store.restore(conversation)
        logger.info("Reloaded conversation %s with %d messages", conversation_id, len(messages))
        return conversation

    async def activate_conversation(self, conversation_id: str) -> Conversation:
        if self.store.get_by_id(conversation_id) is None:
            await self.load_conversation(conversation_id)
        self.store.set_active(conversation_id)
        return self.store.get_by_id(conversation_id)

    async def record_feedback(
        self, conversation_id: str, sponsorship_offer_id: str, package_id: str, action: str
    ) -> None:
        """Store the user's reaction to a recommendation card."""
        if action not in USER_ACTIONS:
            raise InputError(f"action must be one of: {', '.join(USER_ACTIONS)}.")
        await self._owned_conversation_row(conversation_id)
        updated = await self._call(
            self.repository.record_user_action(conversation_id, sponsorship_offer_id, package_id, action),
            "record feedback",
        )
        if not updated:
            raise ConversationNotFoundError("Recommendation not found.")
        logger.info("Recorded %s on offer %s in %s", action, sponsorship_offer_id, conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._conversation_lock(conversation_id):
            await self._owned_conversation_row(conversation_id)
            await self._call(self.repository.delete_conversation(conversation_id), "delete conversation")
            if self.store.get_by_id(conversation_id) is not None:
                self.store.delete_conversation(conversation_id)
        logger.info("Deleted conversation %s", conversation_id)

    def list_conversations(self) -> List[Conversation]:
        return self.store.list_all()

    @property
    def is_idle(self) -> bool:
        """True when no turn or reload holds or waits for a conversation lock."""
        return not self._locks

    # Turn orchestration

    async def _run_turn(
        self, conversation_id: str, text: str, filters: Optional[AdvisorFilters], created: bool = False
    ) -> TurnResult:
        if self.store.get_by_id(conversation_id) is None:
            # Deleted while this turn was queued
            raise ConversationNotFoundError()

        user_msg = ConversationMessage.create("user", text)
        self.store.add_message(conversation_id, user_msg)
        persisted: List[str] = []
        try:
            persisted.append(user_msg.id)
            await self._call(self.repository.insert_message(conversation_id, user_msg), "persist user message")

            reply, candidates, extracted = await self._compose_reply(conversation_id, text, filters)
            assistant_msg = ConversationMessage.create("assistant", reply, candidates)

            persisted.append(assistant_msg.id)
            await self._call(
                self.repository.insert_message(conversation_id, assistant_msg), "persist assistant message"
            )
            if candidates:
                await self._call(
                    self.repository.insert_recommendations(conversation_id, assistant_msg.id, candidates),
                    "persist recommendations",
                )
            await self._call(self.repository.touch_conversation(conversation_id), "touch conversation")
            await self._save_preferences(conversation_id, extracted)
        except (Exception, asyncio.CancelledError) as e:
            await self._rollback(conversation_id, user_msg.id, persisted)
            if created:
                await self._discard_conversation(conversation_id)
            if isinstance(e, (AdvisorError, ContractViolation, asyncio.CancelledError)):
                raise
            logger.exception("Turn failed in conversation %s", conversation_id)
            raise TransientIOError() from e

        if not extracted.is_empty():
            self.store.update_preferences(conversation_id, extracted)
        self.store.add_message(conversation_id, assistant_msg)
        logger.info(
            "Turn complete in %s: %d recommendation(s)",
            conversation_id, len(candidates) if candidates else 0,
        )
        return TurnResult(
            conversation_id=conversation_id,
            assistant_text=reply,
            recommendations=assistant_msg.recommendations,
            message_id=assistant_msg.id,
        )

    async def _compose_reply(
        self, conversation_id: str, text: str, filters: Optional[AdvisorFilters]
    ) -> Tuple[str, Optional[List[CandidatePackage]], SavedPreferences]:
        """Return the grounded reply, its candidates (None when no search ran) and the preferences found in `text`.

        Preferences only reach the store and repository once the turn has been persisted.
        """
        conversation = self.store.get_by_id(conversation_id)
        history = conversation.messages
        user_texts = " ".join(m.content for m in history if m.role == "user")

        extracted = extract_preferences(text, user_texts)
        preferences = conversation.preferences
        if not extracted.is_empty():
            preferences = (preferences or SavedPreferences()).merge(extracted)

        profile = await self._call(self.repository.get_business_profile(self.user_id), "load business profile")
        zip_code = extract_zip_code(text)
        answers_prompt = self._answers_location_prompt(history, zip_code)
        origin, geocode_failed = await self._resolve_origin(profile, zip_code, answers_prompt)

        past_actions = await self._call(self.repository.list_user_actions(conversation_id), "load feedback")
        known_names = await self._call(self.matcher.known_team_names(), "load team names")
        user_amounts = self._user_amounts(user_texts, preferences, filters)

        searching = should_search(text, history) or answers_prompt
        if filters is not None and not filters.as_preferences().is_empty():
            searching = True

        extra: List[str] = []
        candidates: List[CandidatePackage] = []
        if searching:
            if origin is None:
                logger.info("Search requested without a resolved location in %s", conversation_id)
                return (GEOCODE_FAILED_MESSAGE if geocode_failed else LOCATION_PROMPT_MESSAGE), None, extracted

            criteria = self._build_criteria(origin, preferences, filters, past_actions)
            candidates = await self._call(self.matcher.find_candidates(criteria), "candidate search")
            if not candidates:
                assert_grounded(ZERO_RESULTS_MESSAGE, [], known_names, searched=True, fixed_reply=ZERO_RESULTS_MESSAGE)
                return ZERO_RESULTS_MESSAGE, None, extracted
            extra.append(build_recommendations_context(candidates))

        if asks_for_preferences(text):
            has_preferences = preferences is not None and not preferences.is_empty()
            extra.append(PREFERENCES_SUMMARY_INSTRUCTION if has_preferences else NO_PREFERENCES_INSTRUCTION)

        business_context = build_business_context(profile, preferences, past_actions, origin is None)
        recent = [message_to_dict(m) for m in history[-MAX_HISTORY_MESSAGES:]]
        messages = build_messages(business_context, recent, extra)

        reply = await self._grounded_reply(messages, candidates, known_names, user_amounts)
        return reply, (candidates or None), extracted

    async def _grounded_reply(
        self,
        messages: List[Dict[str, str]],
        candidates: Sequence[CandidatePackage],
        known_names: Sequence[str],
        user_amounts: Sequence[float],
    ) -> str:
        attempt_messages = list(messages)
        for attempt in range(1, GROUNDING_MAX_ATTEMPTS + 1):
            reply = await self._call(self.generator.complete(attempt_messages), "text generation", self.llm_timeout_s)
            violations = find_violations(reply, candidates, known_names, user_amounts) if reply else ["empty reply"]
            if not violations:
                break
            logger.warning(
                "Discarding ungrounded reply (attempt %d/%d): %s",
                attempt, GROUNDING_MAX_ATTEMPTS, "; ".join(violations),
            )
            attempt_messages = [
                *messages,
                {
                    "role": "system",
                    "content": "Your previous draft was rejected because it mentioned data that is not in this "
                    "turn's results. Rewrite it using only the teams and prices listed above.",
                },
            ]
        else:
            reply = fallback_reply(candidates)

        assert_grounded(reply, candidates, known_names, user_amounts)
        return reply

    # Preferences, location and criteria

    async def _save_preferences(self, conversation_id: str, extracted: SavedPreferences) -> None:
        if extracted.is_empty():
            return
        current = self.store.get_by_id(conversation_id).preferences
        merged = (current or SavedPreferences()).merge(extracted)
        await self._call(
            self.repository.update_conversation_preferences(conversation_id, merged), "persist preferences"
        )

        # Persistent user preferences are best effort
        try:
            saved = await self._call(self.repository.get_user_preferences(self.user_id), "load user preferences")
            updated = (saved or SavedPreferences()).merge(extracted)
            if (
                updated.budget_min is not None
                and updated.budget_max is not None
                and updated.budget_min > updated.budget_max
            ):
                updated = replace(updated, budget_min=updated.budget_max, budget_max=updated.budget_min)
            await self._call(
                self.repository.upsert_user_preferences(self.user_id, updated), "persist user preferences"
            )
        except AdvisorError as e:
            logger.warning("Could not save user preferences for %s: %s", self.user_id, e)

    async def _resolve_origin(
        self, profile: Optional[BusinessProfile], zip_code: Optional[str], answers_prompt: bool = False
    ) -> Tuple[Optional[Location], bool]:
        """Return (origin, geocode_failed). geocode_failed is True only for a postal code the user just typed.

        A stored location wins over a postal code in the message unless the
        message answers our location prompt.
        """
        has_location = profile is not None and profile.location is not None
        if zip_code and (answers_prompt or not has_location):
            state = profile.state if profile else None
            location = await self._call(self.geocoder.resolve(None, state, zip_code), "geocode")
            if location is None:
                logger.info("Could not geocode postal code %s", zip_code)
                return None, True
            await self._call(
                self.repository.update_business_location(self.user_id, location, zip_code), "save location"
            )
            return location, False

        if profile is None:
            return None, False
        if profile.location is not None:
            return profile.location, False
        if profile.zip_code or (profile.city and profile.state):
            location = await self._call(
                self.geocoder.resolve(profile.city, profile.state, profile.zip_code), "geocode"
            )
            if location is not None:
                await self._call(
                    self.repository.update_business_location(self.user_id, location, None), "save location"
                )
            return location, False
        return None, False

    def _build_criteria(
        self,
        origin: Location,
        preferences: Optional[SavedPreferences],
        filters: Optional[AdvisorFilters],
        past_actions: Sequence[Dict[str, Any]],
    ) -> SearchCriteria:
        prefs = preferences or SavedPreferences()
        explicit = filters or AdvisorFilters()

        budget_min = _first_set(explicit.budget_min, prefs.budget_min, DEFAULT_BUDGET_MIN)
        budget_max = _first_set(explicit.budget_max, prefs.budget_max, DEFAULT_BUDGET_MAX)
        if budget_min > budget_max:
            logger.warning("Budget range reversed (%s > %s), swapping", budget_min, budget_max)
            budget_min, budget_max = budget_max, budget_min

        interested = [a["sport"] for a in past_actions if a["action"] in POSITIVE_ACTIONS and a.get("sport")]
        sport = explicit.sport or (prefs.sports[0] if prefs.sports else None) or (interested[0] if interested else None)

        excluded = tuple(a["sponsorship_offer_id"] for a in past_actions if a["action"] == "not_interested")
        return SearchCriteria(
            origin=origin,
            radius_km=_first_set(explicit.radius_km, prefs.radius_km, DEFAULT_RADIUS_KM),
            budget_min=budget_min,
            budget_max=budget_max,
            sport=sport,
            limit=MAX_RECOMMENDATIONS,
            exclude_offer_ids=excluded,
        )

    @staticmethod
    def _user_amounts(
        user_texts: str, preferences: Optional[SavedPreferences], filters: Optional[AdvisorFilters]
    ) -> List[float]:
        # Dollar figures the user gave us may be repeated back
        amounts = currency_amounts(user_texts)
        for source in (preferences, filters):
            if source is not None:
                amounts.extend(v for v in (source.budget_min, source.budget_max) if v is not None)
        return amounts

    @staticmethod
    def _answers_location_prompt(history: Sequence[ConversationMessage], zip_code: Optional[str]) -> bool:
        if not zip_code:
            return False
        previous = [m for m in history if m.role == "assistant"]
        return bool(previous) and previous[-1].content in (LOCATION_PROMPT_MESSAGE, GEOCODE_FAILED_MESSAGE)

    # Plumbing

    async def _ensure_conversation(
        self, conversation_id: Optional[str], filters: Optional[AdvisorFilters]
    ) -> Tuple[str, bool]:
        """Return (conversation_id, created)."""
        if conversation_id:
            if self.store.get_by_id(conversation_id) is not None:
                return conversation_id, False
            row = await self._call(self.repository.get_conversation(conversation_id), "load conversation")
            if row is not None:
                if row["user_id"] != self.user_id:
                    raise ConversationNotFoundError()
                await self.load_conversation(conversation_id)
                return conversation_id, False
            logger.warning("Conversation %s not found, starting a new one", conversation_id)

        saved = await self._call(self.repository.get_user_preferences(self.user_id), "load user preferences")
        initial = saved if saved is not None else (filters.as_preferences() if filters is not None else None)

        new_id = self.store.create_conversation()
        try:
            server_id = await self._call(
                self.repository.create_conversation(new_id, self.user_id, initial), "create conversation"
            )
        except (Exception, asyncio.CancelledError):
            self.store.delete_conversation(new_id)
            raise
        self.store.set_server_conversation_id(new_id, server_id)
        if initial is not None and not initial.is_empty():
            self.store.update_preferences(new_id, initial)
        logger.info("Started conversation %s for %s", new_id, self.user_id)
        return new_id, True

    async def _owned_conversation_row(self, conversation_id: str) -> Dict[str, Any]:
        row = await self._call(self.repository.get_conversation(conversation_id), "load conversation")
        if row is None or row["user_id"] != self.user_id:
            raise ConversationNotFoundError()
        return row

    async def _rollback(self, conversation_id: str, user_message_id: str, persisted: List[str]) -> None:
        self.store.remove_message(conversation_id, user_message_id)
        for message_id in reversed(persisted):
            try:
                await asyncio.wait_for(self.repository.delete_message(message_id), self.step_timeout_s)
            except Exception as e:
                logger.error("Rollback could not delete message %s: %s", message_id, e)
        logger.info("Rolled back turn in %s", conversation_id)

    async def _discard_conversation(self, conversation_id: str) -> None:
        # The failed turn created this conversation, so nothing else is in it
        try:
            await asyncio.wait_for(self.repository.delete_conversation(conversation_id), self.step_timeout_s)
        except Exception as e:
            logger.error("Rollback could not delete conversation %s: %s", conversation_id, e)
        if self.store.get_by_id(conversation_id) is not None:
            self.store.delete_conversation(conversation_id)
        logger.info("Discarded new conversation %s", conversation_id)

    async def _call(self, awaitable: Awaitable, step: str, timeout: Optional[float] = None):
        """Await a downstream step with a timeout; unknown failures become TransientIOError."""
        try:
            return await asyncio.wait_for(awaitable, timeout or self.step_timeout_s)
        except AdvisorError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("%s timed out", step)
            raise TransientIOError() from e
        except Exception as e:
            logger.exception("%s failed", step)
            raise TransientIOError() from e

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: str) -> AsyncIterator[None]:
        """Serialize work on one conversation. The lock is dropped once nobody holds or waits for it."""
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if not self._lock_users[conversation_id]:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]
