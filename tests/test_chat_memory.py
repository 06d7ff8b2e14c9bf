"""Tests for chat memory and eviction policies."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_message
from lotus.config import MemoryConfig
from lotus.core.memory.chat_memory import (
    ChatMemory,
    InMemoryChatMemoryStore,
    MessageWindowEvictionPolicy,
    TokenWindowEvictionPolicy,
    create_eviction_policy,
)
from lotus.core.types import Role


def _ids(messages) -> list[str]:
    return [m.id for m in messages]


# =============================================================
# Eviction policies
# =============================================================

class TestTokenWindowEvictionPolicy:
    def test_keeps_everything_under_budget(self, counter):
        policy = TokenWindowEvictionPolicy(100, counter)
        window = policy.evict([make_message(Role.USER, "one two three", 1)], make_message(Role.ASSISTANT, "four", 2))
        assert _ids(window) == ["user-1", "assistant-2"]

    def test_drops_oldest_until_within_budget(self, counter):
        policy = TokenWindowEvictionPolicy(8, counter)
        existing = [
            make_message(Role.USER, "one two three", 1),        # 4
            make_message(Role.ASSISTANT, "one two three", 2),   # 4
        ]
        window = policy.evict(existing, make_message(Role.USER, "one two three", 3))

        assert _ids(window) == ["assistant-2", "user-3"]
        assert sum(counter(m.content) for m in window) <= 8

    def test_system_messages_never_evicted(self, counter):
        policy = TokenWindowEvictionPolicy(4, counter)
        existing = [
            make_message(Role.USER, "one two three", 1),
            make_message(Role.SYSTEM, "you are helpful", 2),
        ]
        window = policy.evict(existing, make_message(Role.USER, "one two three", 3))

        assert _ids(window) == ["system-2"]

    def test_system_first_then_others_in_order(self, counter):
        policy = TokenWindowEvictionPolicy(1000, counter)
        existing = [
            make_message(Role.USER, "a", 1),
            make_message(Role.SYSTEM, "rules", 2),
            make_message(Role.ASSISTANT, "b", 3),
        ]
        window = policy.evict(existing, make_message(Role.USER, "c", 4))
        assert _ids(window) == ["system-2", "user-1", "assistant-3", "user-4"]

    def test_new_message_alone_over_budget_is_evicted(self, counter):
        policy = TokenWindowEvictionPolicy(2, counter)
        window = policy.evict([], make_message(Role.USER, "one two three four five", 1))
        assert window == []

    def test_negative_budget_rejected(self, counter):
        with pytest.raises(ValueError):
            TokenWindowEvictionPolicy(-1, counter)


class TestMessageWindowEvictionPolicy:
    def test_keeps_last_n(self):
        policy = MessageWindowEvictionPolicy(2)
        existing = [make_message(Role.USER, "a", 1), make_message(Role.ASSISTANT, "b", 2)]
        window = policy.evict(existing, make_message(Role.USER, "c", 3))
        assert _ids(window) == ["assistant-2", "user-3"]

    def test_system_messages_do_not_count(self):
        policy = MessageWindowEvictionPolicy(1)
        existing = [make_message(Role.SYSTEM, "rules", 1), make_message(Role.USER, "a", 2)]
        window = policy.evict(existing, make_message(Role.ASSISTANT, "b", 3))
        assert _ids(window) == ["system-1", "assistant-3"]

    def test_zero_keeps_only_system(self):
        policy = MessageWindowEvictionPolicy(0)
        window = policy.evict([make_message(Role.SYSTEM, "rules", 1)], make_message(Role.USER, "a", 2))
        assert _ids(window) == ["system-1"]

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            MessageWindowEvictionPolicy(-3)


class TestCreateEvictionPolicy:
    def test_token_policy(self, counter):
        policy = create_eviction_policy(MemoryConfig(policy="token", max_tokens=123), counter)
        assert isinstance(policy, TokenWindowEvictionPolicy)
        assert policy.max_tokens == 123

    def test_message_policy(self, counter):
        policy = create_eviction_policy(MemoryConfig(policy="message", max_messages=7), counter)
        assert isinstance(policy, MessageWindowEvictionPolicy)
        assert policy.max_messages == 7

    def test_unknown_policy(self, counter):
        with pytest.raises(ValueError, match="Unknown eviction policy"):
            create_eviction_policy(MemoryConfig(policy="lru"), counter)


# =============================================================
# ChatMemory
# =============================================================

class TestChatMemory:
    @pytest.mark.asyncio
    async def test_add_and_snapshot(self, counter):
        memory = ChatMemory(MessageWindowEvictionPolicy(10), counter)
        await memory.add_message(make_message(Role.USER, "hello", 1))

        snapshot = memory.get_messages()
        snapshot.clear()
        assert _ids(memory.get_messages()) == ["user-1"]

    @pytest.mark.asyncio
    async def test_window_is_bounded(self, counter):
        memory = ChatMemory(MessageWindowEvictionPolicy(3), counter)
        for t in range(1, 7):
            await memory.add_message(make_message(Role.USER, f"m{t}", t))
        assert _ids(memory.get_messages()) == ["user-4", "user-5", "user-6"]

    @pytest.mark.asyncio
    async def test_concurrent_adds_respect_policy(self, counter):
        memory = ChatMemory(MessageWindowEvictionPolicy(5), counter)
        await asyncio.gather(*(memory.add_message(make_message(Role.USER, f"m{t}", t)) for t in range(20)))

        messages = memory.get_messages()
        assert len(messages) == 5
        assert len(set(_ids(messages))) == 5

    @pytest.mark.asyncio
    async def test_token_usage_reports_window_size(self, counter):
        memory = ChatMemory(TokenWindowEvictionPolicy(100, counter), counter)
        await memory.add_message(make_message(Role.USER, "one two three", 1))
        await memory.add_message(make_message(Role.ASSISTANT, "Thanks!", 2))

        usage = memory.get_current_token_usage()
        assert usage.input_tokens == 5
        assert usage.output_tokens == 0
        assert usage.model_name == "test-model"

    @pytest.mark.asyncio
    async def test_clear(self, counter):
        memory = ChatMemory(MessageWindowEvictionPolicy(10), counter)
        await memory.add_message(make_message(Role.USER, "hello", 1))
        await memory.clear()
        assert memory.get_messages() == []
        assert memory.get_current_token_usage().total_tokens == 0


class TestChatMemoryPersistence:
    def test_store_and_id_must_come_together(self, counter):
        with pytest.raises(ValueError):
            ChatMemory(MessageWindowEvictionPolicy(10), counter, store=InMemoryChatMemoryStore())
        with pytest.raises(ValueError):
            ChatMemory(MessageWindowEvictionPolicy(10), counter, memory_id="conv-1")

    @pytest.mark.asyncio
    async def test_window_survives_new_instance(self, counter):
        store = InMemoryChatMemoryStore()
        first = ChatMemory(MessageWindowEvictionPolicy(2), counter, store=store, memory_id="conv-1")
        for t in range(1, 4):
            await first.add_message(make_message(Role.USER, f"m{t}", t))

        second = ChatMemory(MessageWindowEvictionPolicy(2), counter, store=store, memory_id="conv-1")
        assert _ids(second.get_messages()) == ["user-2", "user-3"]
        assert second.get_current_token_usage().conversation_id == "conv-1"

    def test_restored_window_is_trimmed_to_current_limits(self, counter):
        store = InMemoryChatMemoryStore()
        store.update_messages("conv-1", [
            make_message(Role.SYSTEM, "rules", 1),
            make_message(Role.USER, "a", 2),
            make_message(Role.ASSISTANT, "b", 3),
            make_message(Role.USER, "c", 4),
        ])

        memory = ChatMemory(MessageWindowEvictionPolicy(1), counter, store=store, memory_id="conv-1")

        assert _ids(memory.get_messages()) == ["system-1", "user-4"]
        assert _ids(store.get_messages("conv-1")) == ["system-1", "user-4"]

    def test_restored_window_within_token_budget(self, counter):
        store = InMemoryChatMemoryStore()
        store.update_messages("conv-1", [
            make_message(Role.USER, "one two three", 1),
            make_message(Role.ASSISTANT, "one two three", 2),
        ])

        memory = ChatMemory(TokenWindowEvictionPolicy(4, counter), counter, store=store, memory_id="conv-1")

        assert _ids(memory.get_messages()) == ["assistant-2"]
        assert memory.get_current_token_usage().input_tokens <= 4

    @pytest.mark.asyncio
    async def test_clear_deletes_from_store(self, counter):
        store = InMemoryChatMemoryStore()
        memory = ChatMemory(MessageWindowEvictionPolicy(2), counter, store=store, memory_id="conv-1")
        await memory.add_message(make_message(Role.USER, "hello", 1))
        await memory.clear()
        assert store.get_messages("conv-1") == []

    def test_store_returns_copies(self):
        store = InMemoryChatMemoryStore()
        store.update_messages("c", [make_message(Role.USER, "a", 1)])
        store.get_messages("c").clear()
        assert len(store.get_messages("c")) == 1
