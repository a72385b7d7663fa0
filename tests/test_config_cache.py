import pytest

from voice_promptimiser.agents.config_cache import CachedTargetAgent
from tests.mocks.scripted_llm_client import FakeClock
from tests.mocks.scripted_target_agent import ScriptedTargetAgent


@pytest.fixture
def inner():
    return ScriptedTargetAgent()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cached(inner, clock):
    return CachedTargetAgent(inner, ttl_seconds=60, clock=clock)


class TestCachedTargetAgent:
    @pytest.mark.asyncio
    async def test_reads_are_cached_until_ttl_expires(self, cached, inner, clock):
        await cached.get_config("agent-1")
        await cached.get_config("agent-1")
        assert inner.get_config_calls == 1

        clock.advance(59)
        await cached.get_config("agent-1")
        assert inner.get_config_calls == 1

        clock.advance(1)
        await cached.get_config("agent-1")
        assert inner.get_config_calls == 2

    @pytest.mark.asyncio
    async def test_update_invalidates_entry(self, cached, inner):
        assert (await cached.get_config("agent-1")).prompt == inner.prompt

        await cached.update_config("agent-1", "A new prompt")

        assert (await cached.get_config("agent-1")).prompt == "A new prompt"
        assert inner.get_config_calls == 2

    @pytest.mark.asyncio
    async def test_failed_update_keeps_entry(self, cached, inner):
        await cached.get_config("agent-1")
        inner.update_error = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cached.update_config("agent-1", "A new prompt")

        await cached.get_config("agent-1")
        assert inner.get_config_calls == 1

    @pytest.mark.asyncio
    async def test_entries_are_per_agent(self, cached, inner):
        await cached.get_config("agent-1")
        await cached.get_config("agent-2")
        cached.invalidate("agent-2")
        await cached.get_config("agent-1")
        await cached.get_config("agent-2")

        assert inner.get_config_calls == 3

    @pytest.mark.asyncio
    async def test_clear(self, cached, inner):
        await cached.get_config("agent-1")
        cached.clear()
        await cached.get_config("agent-1")

        assert inner.get_config_calls == 2

    @pytest.mark.asyncio
    async def test_returned_configs_are_copies(self, cached):
        config = await cached.get_config("agent-1")
        config.prompt = "mutated"
        config.metadata["business"]["name"] = "mutated"

        again = await cached.get_config("agent-1")

        assert again.prompt != "mutated"
        assert again.business_context["name"] == "Test Clinic"

    @pytest.mark.asyncio
    async def test_chat_passes_through(self, cached, inner):
        reply = await cached.chat("agent-1", "hello", "conv-9")

        assert reply.response_text == "Echo: hello"
        assert reply.conversation_id == "conv-9"
        assert inner.chats == [{"message": "hello", "conversation_id": "conv-9"}]
