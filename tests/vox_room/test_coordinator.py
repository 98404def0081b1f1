import asyncio
import logging

import pytest

from conftest import join_all
from vox_room import RoomCoordinator, RoomSettings, ValidationRejection, parse_client_message
from vox_room.coordinator import BLOCKED_REASON, IDLE_REASON


def send(room, connection_id, payload):
    room.handle(connection_id, parse_client_message(payload))


@pytest.mark.asyncio
async def test_join_sends_snapshot_then_announces(room, dispatcher):
    alice, bob = join_all(room, "alice", "bob")
    room.voting.submit_prompt(room.registry.get(alice), "Hello room")
    dispatcher.reset()

    send(room, "c-carol", {"type": "join", "name": "carol"})

    direct = [e.type for e in dispatcher.direct("c-carol")]
    assert direct == ["join_accepted", "history_snapshot", "prompt_snapshot", "round_started"]
    history = dispatcher.direct("c-carol", "history_snapshot")[0]
    assert [e.body for e in history.events] == ["alice joined the chat", "bob joined the chat"]
    assert dispatcher.direct("c-carol", "prompt_snapshot")[0].prompts[0].text == "Hello room"
    assert [e.type for e in dispatcher.broadcasts()] == [
        "new_message",
        "participant_joined",
        "participant_count_changed",
    ]
    assert dispatcher.broadcasts("participant_count_changed")[0].count == 3


@pytest.mark.asyncio
async def test_join_rejections_go_to_sender_only(room, dispatcher):
    join_all(room, "alice")
    dispatcher.reset()

    send(room, "c-two", {"type": "join", "name": "ALICE"})
    send(room, "c-three", {"type": "join", "name": "!"})

    taken = dispatcher.direct("c-two", "join_rejected")[0]
    assert taken.code == "name_taken"
    assert dispatcher.direct("c-three", "join_rejected")[0].code == "invalid_name"
    assert dispatcher.broadcasts() == []
    assert room.registry.count == 1


@pytest.mark.asyncio
async def test_commands_before_join_are_rejected(room, dispatcher):
    send(room, "c-ghost", {"type": "submit_prompt", "text": "sneaky"})

    rejected = dispatcher.direct("c-ghost", "prompt_rejected")
    assert rejected[0].code == "not_joined"
    assert room.voting.prompts() == []


@pytest.mark.asyncio
async def test_rejections_use_command_specific_events(room, dispatcher):
    alice, bob = join_all(room, "alice", "bob")
    send(room, alice, {"type": "submit_prompt", "text": "Mine"})
    prompt_id = room.voting.prompts()[0].id
    dispatcher.reset()

    send(room, alice, {"type": "submit_prompt", "text": "Another"})
    send(room, alice, {"type": "vote_prompt", "prompt_id": prompt_id})
    send(room, alice, {"type": "cast_clear_vote", "choice": "yes"})

    assert dispatcher.direct(alice, "prompt_rejected")[0].code == "prompt_pending"
    vote = dispatcher.direct(alice, "vote_rejected")[0]
    assert (vote.code, vote.prompt_id) == ("self_vote", prompt_id)
    assert dispatcher.direct(alice, "clear_rejected")[0].code == "no_active_vote"
    assert dispatcher.received_by(bob) == []


@pytest.mark.asyncio
async def test_reject_reports_unparsed_message(room, dispatcher):
    room.reject("c-x", ValidationRejection("malformed_message", "Messages must be valid JSON."))
    event = dispatcher.direct("c-x", "command_rejected")[0]
    assert event.code == "malformed_message"


@pytest.mark.asyncio
async def test_direct_ai_messages_are_blocked(room, dispatcher):
    (alice,) = join_all(room, "alice")
    history_before = len(room.log)

    send(room, alice, {"type": "user_message", "text": "hey AI"})

    assert dispatcher.direct(alice, "message_blocked")[0].reason == BLOCKED_REASON
    assert len(room.log) == history_before


@pytest.mark.asyncio
async def test_full_prompt_flow_through_handle(room, dispatcher, gateway):
    alice, bob, carol = join_all(room, "alice", "bob", "carol")

    send(room, alice, {"type": "submit_prompt", "text": "Tell me about owls"})
    prompt_id = room.voting.prompts()[0].id
    send(room, bob, {"type": "vote_prompt", "prompt_id": prompt_id})
    send(room, carol, {"type": "vote_prompt", "prompt_id": prompt_id})
    await room.drain()

    assert gateway.calls[0][0] == "Tell me about owls"
    assert room.log.events()[-1].body == "Reply to: Tell me about owls"
    assert room.state_summary()["voting_state"] == "idle"


@pytest.mark.asyncio
async def test_disconnect_cascades(room, dispatcher):
    alice, bob, carol = join_all(room, "alice", "bob", "carol")
    send(room, alice, {"type": "submit_prompt", "text": "Stay please"})
    prompt_id = room.voting.prompts()[0].id
    send(room, bob, {"type": "vote_prompt", "prompt_id": prompt_id})
    send(room, bob, {"type": "typing"})
    dispatcher.reset()

    room.disconnect(bob)

    assert room.voting.get(prompt_id).vote_count == 0
    assert room.registry.get(bob) is None
    left = dispatcher.broadcasts("participant_left")[0]
    assert (left.name, left.count, left.reason) == ("bob", 2, "left")
    assert dispatcher.broadcasts("typing_update")[-1].count == 0
    assert room.log.events()[-1].body == "bob left the chat"
    assert room.disconnect(bob) is None


@pytest.mark.asyncio
async def test_typing_indicator_excludes_sender(room, dispatcher):
    alice, bob = join_all(room, "alice", "bob")
    dispatcher.reset()

    send(room, alice, {"type": "typing"})
    send(room, bob, {"type": "typing"})
    send(room, alice, {"type": "stop_typing"})

    updates = [(target, event.users) for mode, target, event in dispatcher.sent if event.type == "typing_update"]
    assert updates == [("c-alice", ["alice"]), ("c-bob", ["alice", "bob"]), ("c-alice", ["bob"])]
    assert all(mode == "except" for mode, _, event in dispatcher.sent)


@pytest.mark.asyncio
async def test_idle_participant_is_evicted(dispatcher, gateway, clock):
    room = RoomCoordinator(
        dispatcher,
        settings=RoomSettings(idle_timeout_seconds=0.05, stale_sweep_enabled=False),
        gateway=gateway,
        clock=clock,
    )
    try:
        (alice,) = join_all(room, "alice")
        await asyncio.sleep(0.12)

        assert room.registry.count == 0
        assert dispatcher.direct(alice, "idle_disconnect")[0].reason == IDLE_REASON
        assert dispatcher.closed == [alice]
        left = dispatcher.broadcasts("participant_left")[0]
        assert left.reason == "idle"
        assert room.log.events()[-1].body == "alice was disconnected for inactivity"
    finally:
        await room.shutdown()


@pytest.mark.asyncio
async def test_activity_ping_keeps_participant(dispatcher, gateway, clock):
    room = RoomCoordinator(
        dispatcher,
        settings=RoomSettings(idle_timeout_seconds=0.1, stale_sweep_enabled=False),
        gateway=gateway,
        clock=clock,
    )
    try:
        (alice,) = join_all(room, "alice")
        for _ in range(3):
            await asyncio.sleep(0.05)
            send(room, alice, {"type": "activity_ping"})

        assert room.registry.count == 1
        assert dispatcher.closed == []
    finally:
        await room.shutdown()


@pytest.mark.asyncio
async def test_state_summary(room):
    alice, bob = join_all(room, "alice", "bob")
    send(room, alice, {"type": "submit_prompt", "text": "Summary please"})
    send(room, bob, {"type": "propose_clear"})
    send(room, bob, {"type": "cast_clear_vote", "choice": "no"})

    summary = room.state_summary()

    assert summary["participants"] == 2
    assert summary["prompts"] == 1
    assert summary["voting_state"] == "round_active"
    assert summary["required_votes"] == 1
    assert summary["round_remaining_seconds"] == 60
    assert summary["ai_provider"] == "anthropic"
    assert room.participant_names() == ["alice", "bob"]


@pytest.mark.asyncio
@pytest.mark.parametrize("provider,warned", [("mistral", True), ("Claude", False), ("xai", False)])
async def test_start_warns_about_unknown_provider(dispatcher, gateway, caplog, provider, warned):
    room = RoomCoordinator(
        dispatcher,
        settings=RoomSettings(ai_provider=provider, stale_sweep_enabled=False),
        gateway=gateway,
    )
    with caplog.at_level(logging.WARNING, logger="vox_room.coordinator"):
        room.start()
    try:
        warnings = [r for r in caplog.records if "not supported" in r.getMessage()]
        assert bool(warnings) is warned
    finally:
        await room.shutdown()
