"""Shared fixtures: seeded stores and a scripted text generator."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from sponsor_advisor.agent import SponsorshipAdvisor
from sponsor_advisor.conversation import ConversationStore
from sponsor_advisor.geocoder import StaticGeocoder
from sponsor_advisor.llm import AbstractTextGenerator
from sponsor_advisor.models import BusinessProfile, Location, SearchCriteria, TeamPackage
from sponsor_advisor.recommender import InMemoryCandidateStore, RecommendationMatcher
from sponsor_advisor.repository import InMemoryAdvisorRepository

ORIGIN = Location(latitude=40.0, longitude=-74.0)
MARKET_URL = "https://market.test/offers"
USER_ID = "biz-1"

# Along a meridian, one degree of latitude is exactly this many km for R=6371
KM_PER_DEGREE = 6371.0 * 3.141592653589793 / 180.0


def package_north(
    offer_id: str,
    team_name: str,
    sport: str | None,
    km: float,
    price: float,
    reach: int = 1000,
    **kwargs,
) -> TeamPackage:
    """A package `km` kilometers due north of ORIGIN."""
    return TeamPackage(
        team_profile_id=f"team-{offer_id}",
        team_name=team_name,
        sponsorship_offer_id=offer_id,
        package_id=f"pkg-{offer_id}",
        package_name="Jersey Logo",
        price=price,
        sport=sport,
        latitude=ORIGIN.latitude + km / KM_PER_DEGREE,
        longitude=ORIGIN.longitude,
        total_reach=reach,
        **kwargs,
    )


class ScriptedGenerator(AbstractTextGenerator):
    """Returns queued replies in order, then a neutral question."""

    default_reply = "Happy to help! What budget range are you working with?"

    def __init__(self, replies=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls: list[list[dict]] = []
        self.started = asyncio.Event()

    async def complete(self, messages):
        self.calls.append(messages)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return self.default_reply


class RecordingMatcher(RecommendationMatcher):
    """Matcher that remembers every criteria it saw and what it returned."""

    def __init__(self, store) -> None:
        super().__init__(store, MARKET_URL)
        self.calls: list[SearchCriteria] = []
        self.results: list[list] = []

    async def find_candidates(self, criteria):
        self.calls.append(criteria)
        result = await super().find_candidates(criteria)
        self.results.append(result)
        return result


class FlakyRepository(InMemoryAdvisorRepository):
    """In-memory repository that can be told to fail specific writes."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_assistant_insert = False
        self.fail_recommendations = False

    async def insert_message(self, conversation_id, message):
        if self.fail_assistant_insert and message.role == "assistant":
            raise ConnectionError("database unavailable")
        return await super().insert_message(conversation_id, message)

    async def insert_recommendations(self, conversation_id, message_id, candidates, reason=None):
        if self.fail_recommendations:
            raise ConnectionError("database unavailable")
        return await super().insert_recommendations(conversation_id, message_id, candidates)


@pytest.fixture
def packages() -> list[TeamPackage]:
    return [
        package_north("offer-east", "Eastside United", "Soccer", 12, 3000, reach=1500),
        package_north("offer-hoops", "Harbor Hoopers", "Basketball", 5, 1000, reach=400),
        package_north("offer-north", "Northfield FC", "Soccer", 30, 2000, reach=0),
        package_north("offer-far", "Faraway Falcons", "Soccer", 400, 500),
    ]


@pytest.fixture
def candidate_store(packages) -> InMemoryCandidateStore:
    return InMemoryCandidateStore(packages)


@pytest.fixture
def matcher(candidate_store) -> RecordingMatcher:
    return RecordingMatcher(candidate_store)


@pytest.fixture
def repository() -> FlakyRepository:
    return FlakyRepository(
        [
            BusinessProfile(id="bp-1", user_id=USER_ID, business_name="Corner Bakery", location=ORIGIN),
            BusinessProfile(id="bp-2", user_id="no-location", business_name="Pop-up Shop"),
        ]
    )


@pytest.fixture
def geocoder() -> StaticGeocoder:
    return StaticGeocoder(by_postal_code={"08540": ORIGIN})


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def make_advisor(repository, matcher, geocoder, generator) -> Callable[..., SponsorshipAdvisor]:
    def _make(user_id: str = USER_ID, **overrides) -> SponsorshipAdvisor:
        kwargs = dict(
            user_id=user_id,
            store=ConversationStore(),
            repository=repository,
            matcher=matcher,
            geocoder=geocoder,
            generator=generator,
        )
        kwargs.update(overrides)
        return SponsorshipAdvisor(**kwargs)

    return _make


@pytest.fixture
def advisor(make_advisor) -> SponsorshipAdvisor:
    return make_advisor()
