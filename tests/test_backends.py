"""CliBackend and ProviderBackend against local stand-ins."""

import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from advisor_council.errors import ServiceError
from advisor_council.llm.cli_backend import CliBackend
from advisor_council.llm.client import CacheablePrompt, ProviderBackend

PROMPT = CacheablePrompt(system="Be brief.", context="Project: a shop", user_message="Hello")


def fake_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=10, output_tokens=3, cache_read_input_tokens=0),
    )


class TestCacheablePrompt:
    def test_body_and_flat_prompt(self):
        assert PROMPT.body() == "Project: a shop\n\nHello"
        assert PROMPT.to_flat_prompt() == "Be brief.\n\nProject: a shop\n\nHello"
        assert CacheablePrompt(user_message="x").body() == "x"
        assert PROMPT.total_length == len("Be brief.") + len("Project: a shop") + len("Hello")


class TestProviderBackend:
    def test_unavailable_without_key(self):
        backend = ProviderBackend(provider="anthropic", api_key="")
        assert not backend.available
        assert backend.name == "sdk:anthropic"

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            ProviderBackend(provider="mystery", api_key="k")

    @pytest.mark.asyncio
    async def test_generate_without_client_raises(self):
        backend = ProviderBackend(provider="openai", api_key="")
        with pytest.raises(ServiceError):
            await backend.generate(PROMPT)

    @pytest.mark.asyncio
    async def test_anthropic_call_marks_stable_blocks_cacheable(self):
        backend = ProviderBackend(provider="anthropic", api_key="")
        create = AsyncMock(return_value=fake_response("Sure."))
        backend._client = SimpleNamespace(messages=SimpleNamespace(create=create))

        assert await backend.generate(PROMPT) == "Sure."
        kwargs = create.await_args.kwargs
        system = kwargs["system"]
        assert [b["text"] for b in system] == ["Be brief.", "Project: a shop"]
        assert all(b["cache_control"] == {"type": "ephemeral"} for b in system)
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_sdk_errors_become_service_errors(self):
        backend = ProviderBackend(provider="anthropic", api_key="")

        create = AsyncMock(side_effect=ConnectionError("reset"))
        backend._client = SimpleNamespace(messages=SimpleNamespace(create=create))
        with pytest.raises(ServiceError) as info:
            await backend.generate(PROMPT)
        assert info.value.backend == "sdk:anthropic"


class TestCliBackend:
    def test_missing_executable_is_unavailable(self):
        backend = CliBackend(command="advisor-council-no-such-binary")
        assert not backend.available
        assert backend.name == "cli:advisor-council-no-such-binary"

    def test_build_command_appends_system_prompt(self):
        backend = CliBackend(command=sys.executable, args=["-p"])
        assert backend.build_command(PROMPT)[-2:] == ["--append-system-prompt", "Be brief."]

    @pytest.mark.asyncio
    async def test_prompt_body_goes_to_stdin(self):
        backend = CliBackend(
            command=sys.executable,
            args=["-c", "import sys; print(sys.stdin.read().upper())"],
            system_flag="",
        )
        assert await backend.generate(PROMPT) == "PROJECT: A SHOP\n\nHELLO"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self):
        backend = CliBackend(
            command=sys.executable,
            args=["-c", "import sys; sys.stderr.write('bad flag'); sys.exit(2)"],
            system_flag="",
        )
        with pytest.raises(ServiceError, match="exit 2"):
            await backend.generate(PROMPT)
