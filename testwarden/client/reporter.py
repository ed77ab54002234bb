"""Runner-side result reporter: buffers results and posts them in batches."""

from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from testwarden.config.settings import ClientSettings
from testwarden.exceptions import ClientTransportError
from testwarden.models.api import ReportPayload, ResultPayload, RunMetadata
from testwarden.types import Outcome, ResultStatus, RunStatus

logger = structlog.get_logger(__name__)

_RUN_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_run_id() -> str:
    """Run id for local runs that have no CI-provided one."""
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(6))
    return f"local-{int(time.time() * 1000)}-{suffix}"


def determine_outcome(status: str, expected_status: str, retry: int) -> Outcome:
    """Classify one attempt the way the ingestion endpoint expects."""
    if expected_status == ResultStatus.SKIPPED:
        return Outcome.SKIPPED
    if status == expected_status and status in (ResultStatus.PASSED, ResultStatus.FAILED):
        return Outcome.EXPECTED
    if status == ResultStatus.PASSED and retry > 0:
        return Outcome.FLAKY
    return Outcome.UNEXPECTED


class ResultReporter:
    """Collects per-attempt results for one run and flushes them to ``/api/reports``.

    Every batch carries the same run id, so the server accumulates them into a
    single run. ``finish`` sends whatever is left along with the end time and
    final status. With ``enabled=False`` batches are dropped without a
    request.
    """

    def __init__(
        self,
        api_url: str,
        metadata: RunMetadata,
        run_id: str | None = None,
        batch_size: int = 50,
        timeout: float = 10.0,
        fail_silently: bool = True,
        enabled: bool = True,
    ) -> None:
        if not metadata.repository:
            msg = "metadata.repository is required, e.g. 'org/repo'"
            raise ValueError(msg)
        self._api_url = api_url.rstrip("/")
        self._metadata = metadata
        self._run_id = run_id or generate_run_id()
        self._batch_size = batch_size
        self._timeout = timeout
        self._fail_silently = fail_silently
        self._enabled = enabled
        self._start_time = datetime.now(UTC)
        self._buffer: list[ResultPayload] = []
        self._sent = 0

    @classmethod
    def from_settings(
        cls, settings: ClientSettings, metadata: RunMetadata, run_id: str | None = None
    ) -> ResultReporter:
        if not metadata.repository:
            metadata = metadata.model_copy(update={"repository": settings.repository})
        return cls(
            api_url=settings.api_url,
            metadata=metadata,
            run_id=run_id,
            batch_size=settings.batch_size,
            timeout=settings.timeout,
            fail_silently=settings.report_fail_silently,
            enabled=settings.enabled,
        )

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def add(self, result: ResultPayload) -> None:
        self._buffer.append(result)
        if len(self._buffer) >= self._batch_size:
            await self.flush()

    async def flush(self) -> None:
        if not self._buffer:
            return
        batch, self._buffer = self._buffer, []
        await self._send(batch)

    async def finish(self, status: RunStatus) -> None:
        batch, self._buffer = self._buffer, []
        await self._send(batch, end_time=datetime.now(UTC), status=status)

    async def _send(
        self,
        batch: list[ResultPayload],
        end_time: datetime | None = None,
        status: RunStatus | None = None,
    ) -> None:
        if not self._enabled:
            return
        report = ReportPayload(
            run_id=self._run_id,
            metadata=self._metadata,
            start_time=self._start_time,
            end_time=end_time,
            status=status,
            results=batch,
        )
        body: dict[str, Any] = report.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(f"{self._api_url}/api/reports", json=body)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "report_batch_failed",
                run_id=self._run_id,
                results=len(batch),
                error=str(e),
            )
            if not self._fail_silently:
                raise ClientTransportError(f"Failed to send results for run {self._run_id}: {e}") from e
            return
        self._sent += len(batch)
        logger.debug("report_batch_sent", run_id=self._run_id, results=len(batch), status=status)
