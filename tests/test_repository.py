"""Repository tests: message/recommendation joins and feedback records."""

from __future__ import annotations

from pathlib import Path

import pytest

from sponsor_advisor.models import CandidatePackage, ConversationMessage, Location, SavedPreferences
from sponsor_advisor.repository import InMemoryAdvisorRepository, rebuild_messages

SEED = Path(__file__).parent.parent / "data" / "sample_data.json"


def _candidate(offer_id: str, sport: str = "Soccer") -> CandidatePackage:
    return CandidatePackage(
        team_profile_id=f"team-{offer_id}",
        team_name=f"Team {offer_id}",
        sport=sport,
        distance_km=7.25,
        total_reach=300,
        sponsorship_offer_id=offer_id,
        package_id=f"pkg-{offer_id}",
        package_name="Banner",
        price=450.0,
        estimated_cost_per_fan=1.5,
        marketplace_url=f"https://market.test/{offer_id}",
        images=("one.jpg", "two.jpg"),
    )


@pytest.mark.asyncio
async def test_messages_round_trip_with_recommendations() -> None:
    repo = InMemoryAdvisorRepository()
    await repo.create_conversation("c1", "u1", None)
    question = ConversationMessage.create("user", "show me teams")
    answer = ConversationMessage.create("assistant", "Here you go", [_candidate("o1"), _candidate("o2")])
    await repo.insert_message("c1", question)
    await repo.insert_message("c1", answer)
    assert await repo.insert_recommendations("c1", answer.id, list(answer.recommendations)) == 2

    loaded = await repo.load_messages("c1")

    assert loaded == [question, answer]
    assert loaded[0].recommendations is None
    assert loaded[1].recommendations[1].images == ("one.jpg", "two.jpg")


def test_rebuild_orders_by_created_at_then_insert_order() -> None:
    msg = ConversationMessage.create("user", "x")
    rows = [
        {"id": "b", "role": "assistant", "content": "second", "created_at": msg.timestamp, "seq": 2},
        {"id": "a", "role": "user", "content": "first", "created_at": msg.timestamp, "seq": 1},
    ]
    rebuilt = rebuild_messages(rows, [{"message_id": "b", "recommendation_data": None}])
    assert [m.id for m in rebuilt] == ["a", "b"]
    assert rebuilt[1].recommendations is None


@pytest.mark.asyncio
async def test_insert_message_requires_conversation() -> None:
    repo = InMemoryAdvisorRepository()
    with pytest.raises(KeyError):
        await repo.insert_message("missing", ConversationMessage.create("user", "hi"))


@pytest.mark.asyncio
async def test_user_actions_are_recorded_and_listed() -> None:
    repo = InMemoryAdvisorRepository()
    await repo.create_conversation("c1", "u1", None)
    answer = ConversationMessage.create("assistant", "cards", [_candidate("o1"), _candidate("o2", "Hockey")])
    await repo.insert_message("c1", answer)
    await repo.insert_recommendations("c1", answer.id, list(answer.recommendations))

    assert await repo.record_user_action("c1", "o2", "pkg-o2", "saved") is True
    assert await repo.record_user_action("c1", "o9", "pkg-o9", "saved") is False

    actions = await repo.list_user_actions("c1")
    assert actions == [{"action": "saved", "sponsorship_offer_id": "o2", "package_id": "pkg-o2", "sport": "Hockey"}]


@pytest.mark.asyncio
async def test_delete_conversation_removes_messages_and_recommendations() -> None:
    repo = InMemoryAdvisorRepository()
    await repo.create_conversation("c1", "u1", None)
    answer = ConversationMessage.create("assistant", "cards", [_candidate("o1")])
    await repo.insert_message("c1", answer)
    await repo.insert_recommendations("c1", answer.id, [_candidate("o1")])

    await repo.delete_conversation("c1")

    assert await repo.get_conversation("c1") is None
    assert repo.messages == {}
    assert repo.recommendations == []


@pytest.mark.asyncio
async def test_delete_message_removes_its_recommendations() -> None:
    repo = InMemoryAdvisorRepository()
    await repo.create_conversation("c1", "u1", None)
    answer = ConversationMessage.create("assistant", "cards", [_candidate("o1")])
    await repo.insert_message("c1", answer)
    await repo.insert_recommendations("c1", answer.id, [_candidate("o1")])

    await repo.delete_message(answer.id)

    assert await repo.load_messages("c1") == []
    assert repo.recommendations == []


@pytest.mark.asyncio
async def test_preferences_persist_per_conversation_and_user() -> None:
    repo = InMemoryAdvisorRepository()
    prefs = SavedPreferences(sports=("Soccer",), budget_max=3000.0)
    await repo.create_conversation("c1", "u1", prefs)
    assert (await repo.get_conversation("c1"))["metadata"]["preferences"]["budget_max"] == 3000.0

    await repo.update_conversation_preferences("c1", SavedPreferences(radius_km=25.0))
    assert (await repo.get_conversation("c1"))["metadata"]["preferences"]["radius_km"] == 25.0

    assert await repo.get_user_preferences("u1") is None
    await repo.upsert_user_preferences("u1", prefs)
    assert await repo.get_user_preferences("u1") == prefs


@pytest.mark.asyncio
async def test_seed_file_loads_business_profiles() -> None:
    repo = InMemoryAdvisorRepository.from_json_file(str(SEED))

    demo = await repo.get_business_profile("demo-business-owner")
    assert demo.location is not None
    newcomer = await repo.get_business_profile("new-business-owner")
    assert newcomer.location is None

    await repo.update_business_location("new-business-owner", Location(40.74, -74.03), "07030")
    assert (await repo.get_business_profile("new-business-owner")).zip_code == "07030"


@pytest.mark.asyncio
async def test_update_location_creates_missing_profile() -> None:
    repo = InMemoryAdvisorRepository()
    await repo.update_business_location("u9", Location(1.0, 2.0), None)
    profile = await repo.get_business_profile("u9")
    assert profile.location == Location(1.0, 2.0)
    assert profile.zip_code is None
