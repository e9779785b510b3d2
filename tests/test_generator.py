"""TextGenerator facade: fall-through, error markers, health tracking."""

import asyncio
import json

import pytest

from advisor_council.config import load_config
from advisor_council.errors import BothServicesUnavailable
from advisor_council.llm.client import CacheablePrompt
from advisor_council.llm.generator import HealthStatus, TextGenerator, create_generator
from advisor_council.orchestration.keywords import load_keyword_tables

from conftest import MockBackend, failing_responder


def answer(text):
    return lambda prompt: text


class TestComplete:
    @pytest.mark.asyncio
    async def test_primary_serves_when_healthy(self):
        primary = MockBackend(answer("from primary"), name="primary")
        secondary = MockBackend(answer("from secondary"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", "sys", timeout=1.0) == "from primary"
        assert secondary.calls == []
        assert primary.calls[0].system == "sys"
        assert primary.calls[0].user_message == "hi"

    @pytest.mark.asyncio
    async def test_falls_through_on_exception(self):
        primary = MockBackend(failing_responder, name="primary")
        secondary = MockBackend(answer("from secondary"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", timeout=1.0) == "from secondary"

    @pytest.mark.asyncio
    async def test_error_marker_counts_as_failure(self):
        primary = MockBackend(answer("Execution Error: tool crashed"), name="primary")
        secondary = MockBackend(answer("clean answer"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", timeout=1.0) == "clean answer"

    @pytest.mark.asyncio
    async def test_empty_response_counts_as_failure(self):
        primary = MockBackend(answer("   "), name="primary")
        secondary = MockBackend(answer("clean answer"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", timeout=1.0) == "clean answer"

    @pytest.mark.asyncio
    async def test_timeout_falls_through(self):
        async def slow(prompt):
            await asyncio.sleep(5)
            return "too late"

        primary = MockBackend(slow, name="primary")
        secondary = MockBackend(answer("fast"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", timeout=0.01) == "fast"

    @pytest.mark.asyncio
    async def test_both_failing_raises_with_details(self):
        generator = TextGenerator(
            MockBackend(failing_responder, name="primary"),
            MockBackend(failing_responder, name="secondary"),
        )
        with pytest.raises(BothServicesUnavailable) as info:
            await generator.complete("hi", timeout=1.0)
        assert set(info.value.errors) == {"primary", "secondary"}

    @pytest.mark.asyncio
    async def test_unconfigured_backend_is_skipped(self):
        primary = MockBackend(answer("never"), name="primary", available=False)
        secondary = MockBackend(answer("configured"), name="secondary")
        generator = TextGenerator(primary, secondary)

        assert await generator.complete("hi", timeout=1.0) == "configured"
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_cacheable_prompt_passes_through(self):
        primary = MockBackend(answer("ok"), name="primary")
        generator = TextGenerator(primary)
        prompt = CacheablePrompt(system="s", context="c", user_message="u")

        await generator.complete(prompt, timeout=1.0)
        assert primary.calls[0] == prompt


class TestErrorMarkerTable:
    @pytest.fixture
    def quota_tables(self, tmp_path):
        path = tmp_path / "keywords.json"
        path.write_text(json.dumps({"error_markers": ["Quota exceeded"]}))
        return path

    @pytest.mark.asyncio
    async def test_custom_marker_falls_through_to_secondary(self, quota_tables):
        tables = load_keyword_tables(quota_tables)
        generator = TextGenerator(
            MockBackend(answer("Error: quota exceeded"), name="primary"),
            MockBackend(answer("secondary text"), name="secondary"),
            error_markers=tables.error_markers,
        )

        assert await generator.complete("hi", timeout=1.0) == "secondary text"

    def test_factory_reads_markers_from_configured_tables(self, quota_tables, monkeypatch):
        monkeypatch.setenv("COUNCIL_KEYWORDS_PATH", str(quota_tables))
        monkeypatch.setenv("COUNCIL_PRIMARY_COMMAND", "advisor-council-no-such-cli")

        generator = create_generator(load_config())

        assert generator.has_error_marker("Error: quota exceeded")
        assert not generator.has_error_marker("Execution error: exit 1")

    def test_factory_uses_packaged_markers_by_default(self, monkeypatch):
        monkeypatch.delenv("COUNCIL_KEYWORDS_PATH", raising=False)
        monkeypatch.setenv("COUNCIL_PRIMARY_COMMAND", "advisor-council-no-such-cli")

        generator = create_generator(load_config())

        assert generator.has_error_marker("Execution error: exit 1")


class TestHealth:
    @pytest.mark.asyncio
    async def test_probe_statuses(self):
        generator = TextGenerator(
            MockBackend(answer("Health check OK"), name="primary"),
            MockBackend(answer("something else"), name="secondary"),
        )
        health = await generator.check_health()

        assert health["primary"].status == HealthStatus.HEALTHY
        assert health["secondary"].status == HealthStatus.DEGRADED
        assert health["secondary"].consecutive_failures == 1
        assert generator.overall_health() == "good"

    @pytest.mark.asyncio
    async def test_unhealthy_and_unavailable(self):
        generator = TextGenerator(
            MockBackend(failing_responder, name="primary"),
            MockBackend(answer("Health check OK"), name="secondary", available=False),
        )
        health = await generator.check_health()

        assert health["primary"].status == HealthStatus.UNHEALTHY
        assert health["secondary"].status == HealthStatus.UNAVAILABLE
        assert generator.overall_health() == "poor"

    @pytest.mark.asyncio
    async def test_recommended_prefers_healthy_backend(self):
        generator = TextGenerator(
            MockBackend(failing_responder, name="primary"),
            MockBackend(answer("Health check OK"), name="secondary"),
        )
        await generator.check_health()
        assert generator.recommended() == "secondary"

    @pytest.mark.asyncio
    async def test_recommended_prefers_primary_when_both_healthy(self):
        generator = TextGenerator(
            MockBackend(answer("Health check OK"), name="primary"),
            MockBackend(answer("Health check OK"), name="secondary"),
        )
        await generator.check_health()
        assert generator.recommended() == "primary"
        assert generator.overall_health() == "excellent"

    @pytest.mark.asyncio
    async def test_recommended_uses_fewest_failures_when_none_healthy(self):
        calls = {"n": 0}

        def flaky_secondary(prompt):
            calls["n"] += 1
            raise RuntimeError("down")

        generator = TextGenerator(
            MockBackend(failing_responder, name="primary"),
            MockBackend(flaky_secondary, name="secondary"),
        )
        await generator.check_health()
        assert generator.recommended() == "primary"

        generator.health()["primary"].consecutive_failures = 3
        assert generator.recommended() == "secondary"

    @pytest.mark.asyncio
    async def test_recovery_resets_failures(self):
        state = {"up": False}

        def responder(prompt):
            if not state["up"]:
                raise RuntimeError("down")
            return "Health check OK"

        generator = TextGenerator(MockBackend(responder, name="primary"))
        await generator.check_health()
        await generator.check_health()
        assert generator.health()["primary"].consecutive_failures == 2

        state["up"] = True
        await generator.check_health()
        assert generator.health()["primary"].consecutive_failures == 0
        assert generator.health()["primary"].status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_health_loop_starts_and_stops(self):
        primary = MockBackend(answer("Health check OK"), name="primary")
        generator = TextGenerator(primary)

        generator.start_health_checks(interval=3600)
        await asyncio.sleep(0.01)
        await generator.stop_health_checks()

        assert generator.health()["primary"].status == HealthStatus.HEALTHY
        report = generator.health_report()
        assert report["backends"]["primary"]["status"] == "healthy"
