"""Tests for reactions, read receipts and monotonic message status."""
import asyncio

import pytest

from huddle.chat.coordinator import ChatCoordinator
from huddle.chat.schemas import Message, MessageStatus, ReactionUser, ReadReceipt
from huddle.config import ChatSettings
from huddle.storage import DuckDBStore

from conftest import RecordingTransport, join


async def post(coordinator, transport, conn, text="hello", room=None):
    """Send a room message and return its id."""
    data = {"message": text}
    if room:
        data["room"] = room
    await coordinator.dispatch(conn, "send_message", data)
    return transport.events(conn, "message_delivered")[-1]["messageId"]


class TestMessageModel:

    def test_status_never_regresses(self):
        message = Message(senderId="a", senderName="Alice", room="general")
        assert message.advance_status(MessageStatus.READ) is True
        assert message.advance_status(MessageStatus.DELIVERED) is False
        assert message.status == MessageStatus.READ

    def test_sent_can_jump_to_read(self):
        message = Message(senderId="a", senderName="Alice", room="general")
        assert message.advance_status(MessageStatus.READ) is True

    def test_one_reaction_per_user(self):
        message = Message(senderId="a", senderName="Alice", room="general")
        bob = ReactionUser(userId="b", displayName="Bob")
        carol = ReactionUser(userId="c", displayName="Carol")

        message.set_reaction(bob, "❤️")
        message.set_reaction(carol, "❤️")
        message.set_reaction(bob, "😂")

        assert message.reactions_payload() == {
            "❤️": [{"userId": "c", "displayName": "Carol"}],
            "😂": [{"userId": "b", "displayName": "Bob"}],
        }

    def test_duplicate_reader_is_ignored(self):
        message = Message(senderId="a", senderName="Alice", room="general")
        assert message.add_reader(ReadReceipt(userId="b", displayName="Bob")) is True
        assert message.add_reader(ReadReceipt(userId="b", displayName="Bob")) is False
        assert len(message.readBy) == 1


class TestReactions:

    @pytest.mark.asyncio
    async def test_changing_reaction_replaces_previous(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        message_id = await post(coordinator, transport, alice)
        transport.clear()

        await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "❤️"})
        await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "😂"})

        last = transport.events(alice, "message_reaction")[-1]
        assert last == {
            "messageId": message_id,
            "reactions": {"😂": [{"userId": bob, "displayName": "Bob"}]},
        }

    @pytest.mark.asyncio
    async def test_reaction_reaches_every_connection(self, coordinator, transport):
        """Reactions to a named-room message are broadcast beyond the room."""
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        carol = await join(coordinator, "Carol")
        await coordinator.dispatch(alice, "join_room", "random")
        message_id = await post(coordinator, transport, alice, room="random")
        transport.clear()

        await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "👍"})

        assert sorted(transport.recipients("message_reaction")) == sorted([alice, bob, carol])

    @pytest.mark.asyncio
    async def test_reaction_to_unknown_message_is_ignored(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        transport.clear()

        await coordinator.dispatch(alice, "add_reaction", {"messageId": "nope", "reaction": "👍"})

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_reaction_to_private_message(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        await coordinator.dispatch(alice, "private_message", {"to": bob, "message": "hi"})
        message_id = transport.events(bob, "private_message")[0]["id"]

        await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "👋"})

        stored = coordinator.durability.volatile.find_nowait(message_id)
        assert list(stored.reactions) == ["👋"]


class TestReadReceipts:

    @pytest.mark.asyncio
    async def test_read_notifies_sender_only(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        carol = await join(coordinator, "Carol")
        message_id = await post(coordinator, transport, alice)
        transport.clear()

        await coordinator.dispatch(bob, "message_read", {"messageId": message_id})

        assert transport.recipients("message_read") == [alice]
        assert transport.events(alice, "message_read") == [
            {"messageId": message_id, "readBy": "Bob"}
        ]
        assert transport.events(carol) == []
        stored = coordinator.durability.volatile.find_nowait(message_id)
        assert stored.status == MessageStatus.READ
        assert [r.displayName for r in stored.readBy] == ["Bob"]

    @pytest.mark.asyncio
    async def test_reading_own_message_is_noop(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        message_id = await post(coordinator, transport, alice)
        transport.clear()

        await coordinator.dispatch(alice, "message_read", {"messageId": message_id})

        assert transport.sent == []
        stored = coordinator.durability.volatile.find_nowait(message_id)
        assert stored.readBy == []
        assert stored.status == MessageStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_read_after_sender_left(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        message_id = await post(coordinator, transport, alice)
        await coordinator.disconnect(alice)
        transport.clear()

        await coordinator.dispatch(bob, "message_read", {"messageId": message_id})

        assert transport.recipients("message_read") == []
        stored = coordinator.durability.volatile.find_nowait(message_id)
        assert stored.status == MessageStatus.READ


class TestDurableReceipts:

    @pytest.mark.asyncio
    async def test_reactions_and_reads_persist(self, tmp_path):
        transport = RecordingTransport()
        coordinator = ChatCoordinator(
            transport, DuckDBStore(str(tmp_path / "chat.duckdb")), ChatSettings()
        )
        try:
            alice = await join(coordinator, "Alice")
            bob = await join(coordinator, "Bob")
            message_id = await post(coordinator, transport, alice)

            await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "❤️"})
            await coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "😂"})
            await coordinator.dispatch(bob, "message_read", {"messageId": message_id})

            stored = await coordinator.durability.store.get_message(message_id)
            assert list(stored.reactions) == ["😂"]
            assert [u.displayName for u in stored.reactions["😂"]] == ["Bob"]
            assert [r.displayName for r in stored.readBy] == ["Bob"]
            assert stored.status == MessageStatus.READ
            assert transport.events(alice, "message_read") == [
                {"messageId": message_id, "readBy": "Bob"}
            ]
        finally:
            coordinator.close()

    @pytest.mark.asyncio
    async def test_concurrent_reactions_from_different_users(self, tmp_path):
        """Reactions racing on one message are both kept."""
        transport = RecordingTransport()
        coordinator = ChatCoordinator(
            transport, DuckDBStore(str(tmp_path / "chat.duckdb")), ChatSettings()
        )
        try:
            alice = await join(coordinator, "Alice")
            bob = await join(coordinator, "Bob")
            carol = await join(coordinator, "Carol")
            message_id = await post(coordinator, transport, alice)

            await asyncio.gather(
                coordinator.dispatch(bob, "add_reaction", {"messageId": message_id, "reaction": "A"}),
                coordinator.dispatch(carol, "add_reaction", {"messageId": message_id, "reaction": "B"}),
            )

            stored = await coordinator.durability.store.get_message(message_id)
            assert {emoji: [u.displayName for u in users] for emoji, users in stored.reactions.items()} == {
                "A": ["Bob"],
                "B": ["Carol"],
            }
        finally:
            coordinator.close()
