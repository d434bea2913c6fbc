import pytest

from soulaware.models import SessionState
from soulaware.repository import InMemoryRepository


@pytest.mark.asyncio
async def test_session_is_reused_per_guest():
    repo = InMemoryRepository()
    a = await repo.get_or_create_session("guest-a")
    again = await repo.get_or_create_session("guest-a")
    b = await repo.get_or_create_session("guest-b")
    assert a.id == again.id
    assert a.id != b.id
    assert (await repo.find_session("guest-a")).id == a.id
    assert await repo.find_session("nobody") is None


@pytest.mark.asyncio
async def test_messages_are_ordered_and_windowed():
    repo = InMemoryRepository()
    s = await repo.get_or_create_session("g")
    for i in range(5):
        await repo.create_message(s.id, "user", f"u{i}")
        await repo.create_message(s.id, "assistant", f"a{i}")
    await repo.create_message(s.id, "assistant", "crisis resources", mode="safety")

    all_turns = await repo.list_messages(s.id)
    assert [t.content for t in all_turns][:2] == ["u0", "a0"]
    recent = await repo.list_recent_messages(s.id, 3)
    assert [t.content for t in recent] == ["u4", "a4", "crisis resources"]
    assert await repo.list_messages(s.id, limit=0) == []
    assert await repo.count_user_turns(s.id) == 5


@pytest.mark.asyncio
async def test_session_state_patch_is_clamped():
    repo = InMemoryRepository()
    state = await repo.get_or_create_session_state("s1")
    assert state == await repo.get_or_create_session_state("s1")
    assert state.pending_clarifier is False

    updated = await repo.update_session_state("s1", {
        "rolling_summary": " ".join(["word"] * 120),
        "user_facts": [f"fact {i}" for i in range(12)] + [""],
        "open_loops": ["x" * 300],
        "pending_clarifier": 1,
        "last_lens": "not-a-lens",
        "unknown_key": "ignored",
    })
    assert len(updated.rolling_summary.split()) == 80
    assert len(updated.user_facts) == 8
    assert len(updated.open_loops[0]) <= 130
    assert updated.pending_clarifier is True
    assert updated.last_lens == ""
    assert not hasattr(updated, "unknown_key")

    kept = await repo.update_session_state("s1", {"last_lens": "values"})
    assert kept.last_lens == "values"
    assert kept.user_facts == updated.user_facts


def test_session_state_to_dict_uses_camel_case():
    data = SessionState("s1", clarifier_topic="career").to_dict()
    assert data["clarifierTopic"] == "career"
    assert data["pendingClarifier"] is False
    assert set(data) >= {"rollingSummary", "userFacts", "openLoops", "lastLens", "lastModel"}


@pytest.mark.asyncio
async def test_snapshots_are_scoped_to_their_guest():
    repo = InMemoryRepository()
    s = await repo.get_or_create_session("owner")
    await repo.get_or_create_session("intruder")
    first = await repo.create_snapshot(s.id, "m1", ["v"], ["a"])
    second = await repo.create_snapshot(s.id, "m2", ["v"], ["a"])
    assert (await repo.get_latest_snapshot(s.id)).id == second.id
    assert (await repo.get_snapshot_for_guest(first.id, "owner")).mission == "m1"
    assert await repo.get_snapshot_for_guest(first.id, "intruder") is None
    assert await repo.get_snapshot_for_guest("missing", "owner") is None
    assert second.to_response() == {"snapshotId": second.id, "mission": "m2", "values": ["v"], "nextActions": ["a"]}


@pytest.mark.asyncio
async def test_clear_session_keeps_analytics_and_delete_removes_everything():
    repo = InMemoryRepository()
    s = await repo.get_or_create_session("g")
    await repo.create_message(s.id, "user", "hi")
    await repo.update_session_state(s.id, {"rolling_summary": "x"})
    await repo.create_snapshot(s.id, "m", ["v"], ["a"])
    await repo.create_safety_event("g", s.id, "high", "trigger")
    await repo.track_event("g", "chat_message_sent", {"engine": "v1"})

    await repo.clear_session("g")
    assert await repo.list_messages(s.id) == []
    assert await repo.get_latest_snapshot(s.id) is None
    assert repo.safety_events == []
    assert s.id not in repo.states
    assert len(repo.analytics) == 1
    assert await repo.find_session("g") is not None

    await repo.delete_guest("g")
    assert await repo.find_session("g") is None
    assert repo.analytics == []
    assert repo.stats() == {"sessionCount": 0, "messageCount": 0, "snapshotCount": 0, "analyticsEventCount": 0}


@pytest.mark.asyncio
async def test_list_events_since_filters_by_name_and_time():
    repo = InMemoryRepository()
    await repo.track_event("g", "chat_message_sent", {"estimatedCostUsd": 0.01})
    await repo.track_event("g", "snapshot_generated")
    events = await repo.list_events_since("chat_message_sent", "2000-01-01T00:00:00+00:00")
    assert [e.event_name for e in events] == ["chat_message_sent"]
    assert await repo.list_events_since("chat_message_sent", "2999-01-01T00:00:00+00:00") == []


@pytest.mark.asyncio
async def test_clear_and_delete_touch_only_the_named_guest():
    repo = InMemoryRepository()
    mine = await repo.get_or_create_session("mine")
    theirs = await repo.get_or_create_session("theirs")
    await repo.create_message(mine.id, "user", "mine")
    await repo.create_message(theirs.id, "user", "theirs")
    await repo.update_session_state(theirs.id, {"last_lens": "values"})

    await repo.clear_session("nobody")
    await repo.delete_guest("nobody")
    assert len(repo.messages) == 2

    await repo.delete_guest("mine")
    assert await repo.find_session("mine") is None
    assert (await repo.find_session("theirs")).id == theirs.id
    assert [m.content for m in repo.messages] == ["theirs"]
    assert repo.states[theirs.id].last_lens == "values"

    await repo.clear_session("theirs")
    assert repo.messages == []
    assert (await repo.get_or_create_session("theirs")).id == theirs.id
