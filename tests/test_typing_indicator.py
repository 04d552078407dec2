"""Tests for per-room typing state and typing_users broadcasts."""
import pytest

from huddle.chat.typing_indicator import TypingIndicatorAggregator

from conftest import join


class TestAggregator:

    def test_set_and_clear(self):
        typing = TypingIndicatorAggregator()
        assert typing.set_typing("a", "general", "Alice", True) == ["Alice"]
        assert typing.set_typing("b", "general", "Bob", True) == ["Alice", "Bob"]
        assert typing.set_typing("a", "general", "Alice", False) == ["Bob"]

    def test_repeated_true_does_not_duplicate(self):
        typing = TypingIndicatorAggregator()
        typing.set_typing("a", "general", "Alice", True)
        assert typing.set_typing("a", "general", "Alice", True) == ["Alice"]

    def test_stop_without_start_is_noop(self):
        typing = TypingIndicatorAggregator()
        assert typing.set_typing("a", "general", "Alice", False) == []

    def test_rooms_are_independent(self):
        typing = TypingIndicatorAggregator()
        typing.set_typing("a", "general", "Alice", True)
        typing.set_typing("a", "random", "Alice", True)
        typing.set_typing("a", "general", "Alice", False)
        assert typing.typing_in("random") == ["Alice"]

    def test_clear_connection_reports_changed_rooms(self):
        typing = TypingIndicatorAggregator()
        typing.set_typing("a", "general", "Alice", True)
        typing.set_typing("a", "random", "Alice", True)
        typing.set_typing("b", "random", "Bob", True)

        changed = typing.clear_connection("a")

        assert sorted(changed) == ["general", "random"]
        assert typing.typing_in("general") == []
        assert typing.typing_in("random") == ["Bob"]


class TestTypingEvents:

    @pytest.mark.asyncio
    async def test_typing_broadcast_excludes_typist(self, coordinator, transport):
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        transport.clear()

        await coordinator.dispatch(alice, "typing", {"isTyping": True, "room": "general"})

        assert transport.events(bob, "typing_users") == [{"room": "general", "users": ["Alice"]}]
        assert transport.events(alice, "typing_users") == []

    @pytest.mark.asyncio
    async def test_typing_without_session_is_ignored(self, coordinator, transport):
        coordinator.connect("c1")
        await coordinator.dispatch("c1", "typing", {"isTyping": True})
        assert coordinator.typing.typing_in("general") == []
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_disconnect_rebroadcasts_typing_users(self, coordinator, transport):
        """A typist who drops without isTyping=false is cleared for everyone."""
        alice = await join(coordinator, "Alice")
        bob = await join(coordinator, "Bob")
        await coordinator.dispatch(alice, "typing", {"isTyping": True})
        transport.clear()

        await coordinator.disconnect(alice)

        assert transport.events(bob, "typing_users") == [{"room": "general", "users": []}]
