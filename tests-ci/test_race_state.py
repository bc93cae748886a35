"""
Tests for race registration: pure projector + RaceRegistry owner
"""
from datetime import datetime, timezone

import pytest

from core.message_types import NEW_PARTICIPANT, RACE_WINNER_DETERMINED, REGISTRATION_STATUS
from core.race_state import (
    RaceRegistry,
    RaceState,
    color_for_name,
    is_register_command,
    project_chat_message,
)
from twitchapi.eventsub_protocol import ChatMessageEvent

T0 = datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc)


def chat(user_id="42", name="Rex", text="!register", color=None) -> ChatMessageEvent:
    return ChatMessageEvent(
        broadcaster_user_id="123",
        chatter_user_id=user_id,
        chatter_user_login=name.lower(),
        chatter_user_name=name,
        text=text,
        color=color,
    )


@pytest.mark.unit
class TestProjectChatMessage:
    """Pure state transitions"""

    def test_register_while_open(self):
        """!register from Rex while open: one participant, one new_participant"""
        state, events = project_chat_message(RaceState(is_open=True), chat(), now=T0)

        assert [p.user_id for p in state.participants] == ["42"]
        participant = state.participants[0]
        assert participant.user_name == "Rex"
        assert participant.user_login == "rex"
        assert participant.registered_at == T0
        assert participant.color == "#014085"
        assert len(events) == 1
        assert events[0].name == NEW_PARTICIPANT
        assert events[0].data == {"userName": "Rex"}

    def test_chat_color_preferred(self):
        state, _ = project_chat_message(RaceState(is_open=True), chat(color="#00FF00"))
        assert state.participants[0].color == "#00FF00"

    def test_closed_registration_ignored(self):
        before = RaceState(is_open=False)
        state, events = project_chat_message(before, chat())
        assert state is before
        assert events == []

    def test_duplicate_user_ignored(self):
        first, _ = project_chat_message(RaceState(is_open=True), chat())
        second, events = project_chat_message(first, chat(name="RexAgain", text="!register please"))
        assert second is first
        assert events == []

    def test_other_messages_ignored(self):
        before = RaceState(is_open=True)
        state, events = project_chat_message(before, chat(text="hello !register"))
        assert state is before
        assert events == []

    def test_custom_command(self):
        state, events = project_chat_message(RaceState(is_open=True), chat(text="!join"), command="!join")
        assert len(state.participants) == 1
        assert len(events) == 1

    def test_input_state_untouched(self):
        before = RaceState(is_open=True)
        project_chat_message(before, chat())
        assert before.participants == ()


@pytest.mark.unit
class TestHelpers:
    """Command matching and name colors"""

    @pytest.mark.parametrize("text", ["!register", "  !REGISTER", "!Register me"])
    def test_register_command_matches(self, text):
        assert is_register_command(text)

    @pytest.mark.parametrize("text", ["register", "", "please !register"])
    def test_register_command_rejects(self, text):
        assert not is_register_command(text)

    def test_color_is_deterministic(self):
        assert color_for_name("Rex") == "#014085"
        assert color_for_name("Rex") == color_for_name("Rex")
        assert color_for_name("Rex") != color_for_name("rex")

    def test_color_hashes_utf16_code_units(self):
        # U+1F400 is the surrogate pair D83D DC00
        assert color_for_name("\U0001F400") == "#1B0B63"
        assert color_for_name("Rex\U0001F400") != color_for_name("Rex")

    def test_color_format(self):
        for name in ["", "a", "VeryLongDisplayName_12345", "名前"]:
            color = color_for_name(name)
            assert len(color) == 7 and color.startswith("#")
            int(color[1:], 16)

    def test_state_to_dict(self):
        state, _ = project_chat_message(RaceState(is_open=True), chat(), now=T0)
        assert state.to_dict() == {
            "isRegistrationOpen": True,
            "participants": [{
                "userId": "42",
                "userName": "Rex",
                "userLogin": "rex",
                "registeredAt": T0.isoformat(),
                "color": "#014085",
            }],
        }


@pytest.mark.unit
class TestRaceRegistry:
    """Owner: lock, snapshots, observer events"""

    @pytest.mark.asyncio
    async def test_open_register_close(self, bus, recorder):
        registry = RaceRegistry(bus)

        await registry.open_registration()
        assert await registry.handle_chat_message(chat())
        assert not await registry.handle_chat_message(chat())
        count = await registry.close_registration()

        assert count == 1
        assert not registry.snapshot().is_open
        assert registry.snapshot().names == ["Rex"]
        events = await recorder.flush()
        assert [e.name for e in events] == [REGISTRATION_STATUS, NEW_PARTICIPANT, REGISTRATION_STATUS]
        assert events[0].data["isOpen"] is True
        assert events[2].data["isOpen"] is False

    @pytest.mark.asyncio
    async def test_reopen_clears_participants(self, bus):
        registry = RaceRegistry(bus)
        await registry.open_registration()
        await registry.handle_chat_message(chat())
        await registry.open_registration()
        assert registry.snapshot().participants == ()

    @pytest.mark.asyncio
    async def test_chat_ignored_before_open(self, bus, recorder):
        registry = RaceRegistry(bus)
        assert not await registry.handle_chat_message(chat())
        assert await recorder.flush() == []

    @pytest.mark.asyncio
    async def test_declare_winner(self, bus, recorder):
        registry = RaceRegistry(bus)
        await registry.open_registration()
        await registry.handle_chat_message(chat("1", "Rex"))
        await registry.handle_chat_message(chat("2", "Speedy"))

        found, names = await registry.declare_winner("speedy")

        assert found
        assert names == ["Rex", "Speedy"]
        state = registry.snapshot()
        assert not state.is_open
        assert state.participants == ()
        events = await recorder.flush()
        winner = events[-1]
        assert winner.name == RACE_WINNER_DETERMINED
        assert winner.data == {"winner": "speedy", "participantNames": ["Rex", "Speedy"]}

    @pytest.mark.asyncio
    async def test_declare_unknown_winner(self, bus):
        registry = RaceRegistry(bus)
        found, names = await registry.declare_winner("Nobody")
        assert not found
        assert names == []

    @pytest.mark.asyncio
    async def test_add_participant_directly(self, bus, recorder):
        registry = RaceRegistry(bus)
        assert await registry.add_participant("Rex") == (False, "closed")

        await registry.open_registration()
        assert await registry.add_participant("Rex") == (True, "")
        assert await registry.add_participant("rex") == (False, "duplicate")
        assert registry.snapshot().names == ["Rex"]
        await recorder.flush()
        assert recorder.names() == [REGISTRATION_STATUS, NEW_PARTICIPANT]

    @pytest.mark.asyncio
    async def test_status_event_reflects_state(self, bus):
        registry = RaceRegistry(bus)
        assert registry.status_event().data["isOpen"] is False
        await registry.open_registration()
        assert registry.status_event().to_wire()["event"] == REGISTRATION_STATUS
        assert registry.status_event().data["isOpen"] is True
