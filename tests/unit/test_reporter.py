"""Unit tests for ResultReporter and outcome classification."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from testwarden.client.reporter import ResultReporter, determine_outcome, generate_run_id
from testwarden.config.settings import ClientSettings
from testwarden.exceptions import ClientTransportError
from testwarden.models.api import ResultPayload, RunMetadata
from testwarden.types import Outcome, RunStatus


def _patch_httpx_client(side_effect: Exception | None = None) -> tuple[Any, AsyncMock]:
    mock_resp = MagicMock()
    mock_resp.raise_for_status.return_value = None
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=mock_resp, side_effect=side_effect)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return patch("testwarden.client.reporter.httpx.AsyncClient", return_value=mock_client), mock_client


def _result(n: int) -> ResultPayload:
    return ResultPayload(
        test_id=f"t-{n}",
        file_path="tests/cart.spec.ts",
        title=f"cart case {n}",
        status="passed",
        outcome="expected",
        start_time=datetime(2026, 3, 1, 12, 0, n, tzinfo=UTC),
    )


def _reporter(**kwargs: Any) -> ResultReporter:
    return ResultReporter(
        "https://warden.example.com",
        RunMetadata(repository="acme/web", branch="main"),
        run_id="ci-42",
        **kwargs,
    )


@pytest.mark.unit
class TestDetermineOutcome:
    @pytest.mark.parametrize(
        ("status", "expected_status", "retry", "outcome"),
        [
            ("passed", "passed", 0, Outcome.EXPECTED),
            ("failed", "failed", 0, Outcome.EXPECTED),
            ("skipped", "skipped", 0, Outcome.SKIPPED),
            ("passed", "skipped", 0, Outcome.SKIPPED),
            ("passed", "passed", 2, Outcome.EXPECTED),
            ("passed", "failed", 1, Outcome.FLAKY),
            ("failed", "passed", 0, Outcome.UNEXPECTED),
            ("timedOut", "passed", 1, Outcome.UNEXPECTED),
            ("interrupted", "interrupted", 0, Outcome.UNEXPECTED),
        ],
    )
    def test_classification(
        self, status: str, expected_status: str, retry: int, outcome: Outcome
    ) -> None:
        assert determine_outcome(status, expected_status, retry) == outcome


@pytest.mark.unit
class TestRunId:
    def test_local_run_id_format(self) -> None:
        assert re.fullmatch(r"local-\d{13}-[a-z0-9]{6}", generate_run_id())

    def test_run_ids_differ(self) -> None:
        assert generate_run_id() != generate_run_id()

    def test_reporter_generates_id_when_missing(self) -> None:
        reporter = ResultReporter("https://x", RunMetadata(repository="acme/web"))
        assert reporter.run_id.startswith("local-")


@pytest.mark.unit
class TestResultReporter:
    def test_repository_required(self) -> None:
        with pytest.raises(ValueError, match="repository"):
            ResultReporter("https://x", RunMetadata())

    def test_from_settings_fills_repository(self) -> None:
        settings = ClientSettings(
            api_url="https://warden.example.com", repository="acme/web", batch_size=10
        )
        reporter = ResultReporter.from_settings(settings, RunMetadata(branch="main"))
        assert reporter._metadata.repository == "acme/web"
        assert reporter._batch_size == 10

    def test_failure_policy_independent_of_checker_fail_open(self) -> None:
        strict_checker = ClientSettings(
            api_url="https://warden.example.com", repository="acme/web", fail_open=False
        )
        assert ResultReporter.from_settings(strict_checker, RunMetadata())._fail_silently is True

        strict_reporter = ClientSettings(
            api_url="https://warden.example.com",
            repository="acme/web",
            report_fail_silently=False,
        )
        assert ResultReporter.from_settings(strict_reporter, RunMetadata())._fail_silently is False

    @pytest.mark.asyncio
    async def test_buffers_until_batch_size(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            reporter = _reporter(batch_size=3)
            for n in range(2):
                await reporter.add(_result(n))
            assert mock_client.post.await_count == 0
            assert reporter.pending == 2

            await reporter.add(_result(2))
            assert mock_client.post.await_count == 1
            assert reporter.pending == 0
            assert reporter.sent == 3

    @pytest.mark.asyncio
    async def test_batch_body_is_camel_case(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            reporter = _reporter(batch_size=1)
            await reporter.add(_result(0))

        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        assert url == "https://warden.example.com/api/reports"
        assert body["runId"] == "ci-42"
        assert body["metadata"]["repository"] == "acme/web"
        assert "endTime" not in body
        result = body["results"][0]
        assert result["testId"] == "t-0"
        assert result["filePath"] == "tests/cart.spec.ts"
        assert result["outcome"] == "expected"

    @pytest.mark.asyncio
    async def test_flush_with_empty_buffer_is_noop(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            await _reporter().flush()
        assert mock_client.post.await_count == 0

    @pytest.mark.asyncio
    async def test_finish_sends_remaining_with_status(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            reporter = _reporter()
            await reporter.add(_result(0))
            await reporter.finish(RunStatus.FAILED)

        body = mock_client.post.call_args.kwargs["json"]
        assert body["status"] == "failed"
        assert "endTime" in body
        assert len(body["results"]) == 1
        assert reporter.sent == 1

    @pytest.mark.asyncio
    async def test_finish_without_results_still_reports_status(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            await _reporter().finish(RunStatus.PASSED)
        body = mock_client.post.call_args.kwargs["json"]
        assert body["results"] == []
        assert body["status"] == "passed"

    @pytest.mark.asyncio
    async def test_failures_are_silent_by_default(self) -> None:
        patcher, _ = _patch_httpx_client(side_effect=httpx.ConnectError("refused"))
        with patcher:
            reporter = _reporter(batch_size=1)
            await reporter.add(_result(0))
        assert reporter.sent == 0

    @pytest.mark.asyncio
    async def test_failures_raise_when_not_silent(self) -> None:
        patcher, _ = _patch_httpx_client(side_effect=httpx.ConnectError("refused"))
        with patcher, pytest.raises(ClientTransportError, match="ci-42"):
            await _reporter(batch_size=1, fail_silently=False).add(_result(0))

    @pytest.mark.asyncio
    async def test_disabled_reporter_sends_nothing(self) -> None:
        patcher, mock_client = _patch_httpx_client()
        with patcher:
            reporter = _reporter(batch_size=1, enabled=False)
            await reporter.add(_result(0))
            await reporter.finish(RunStatus.PASSED)
        assert mock_client.post.await_count == 0
        assert reporter.sent == 0
