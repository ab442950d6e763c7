"""Per-user advisor cache tests."""

from __future__ import annotations

import pytest

from sponsor_advisor.sessions import AdvisorSessions


@pytest.fixture
def sessions(repository, matcher, geocoder, generator) -> AdvisorSessions:
    return AdvisorSessions(repository, matcher, geocoder, generator, max_advisors=2)


def test_same_user_gets_same_advisor(sessions) -> None:
    advisor = sessions.for_user("a")
    assert sessions.for_user("a") is advisor
    assert sessions.for_user("b") is not advisor


def test_least_recently_used_idle_advisor_is_dropped(sessions) -> None:
    a = sessions.for_user("a")
    b = sessions.for_user("b")
    sessions.for_user("a")

    sessions.for_user("c")

    assert sessions.for_user("a") is a
    assert sessions.for_user("b") is not b


@pytest.mark.asyncio
async def test_busy_advisor_is_kept(sessions) -> None:
    a = sessions.for_user("a")
    sessions.for_user("b")

    async with a._conversation_lock("c1"):
        assert not a.is_idle
        sessions.for_user("c")
        assert sessions._advisors["a"] is a
        assert "b" not in sessions._advisors

    assert a.is_idle


@pytest.mark.asyncio
async def test_dropped_advisor_reloads_conversation(sessions, generator) -> None:
    first = await sessions.for_user("biz-1").handle_turn(None, "Hello")
    sessions.for_user("x")
    sessions.for_user("y")

    fresh = sessions.for_user("biz-1")
    result = await fresh.handle_turn(first.conversation_id, "Still there?")

    assert result.conversation_id == first.conversation_id
    assert len(fresh.store.get_by_id(first.conversation_id).messages) == 4
