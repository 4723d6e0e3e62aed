"""HTTP client for the static-analysis server's quality-gate API.

After the analysis command uploads a report, the server processes it as a
background task.  The client polls that task until it finishes, then asks
for the quality-gate status of the resulting analysis.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from delivery_pipeline.models.reports import GateCondition, QualityGateVerdict

_PENDING_TASK_STATES = {"PENDING", "IN_PROGRESS"}


class SonarError(Exception):
    """Raised when the analysis server is unreachable or answers unexpectedly."""


class AnalysisTimeoutError(SonarError):
    """Raised when the background analysis task does not finish in time."""


def read_report_task(path: Path) -> dict[str, str]:
    """Parse the ``key=value`` lines of a scanner's ``report-task.txt``.

    Raises:
        SonarError: If the file is missing or has no ``ceTaskId``.
    """
    if not path.exists():
        msg = f"Analysis report task file not found: {path}"
        raise SonarError(msg)
    values: dict[str, str] = {}
    for line in path.read_text().splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    if "ceTaskId" not in values:
        msg = f"No ceTaskId in {path}"
        raise SonarError(msg)
    return values


class SonarClient:
    """Quality-gate lookups against the analysis server.

    Args:
        host_url: Server base URL.
        token: User token, sent as the basic-auth username.
        timeout_seconds: Per-request HTTP timeout.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        sleep: Sleep function used between polls.
    """

    def __init__(
        self,
        host_url: str,
        token: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = httpx.Client(
            base_url=host_url.rstrip("/"),
            auth=(token, ""),
            timeout=timeout_seconds,
            transport=transport,
        )
        self._sleep = sleep

    def __enter__(self) -> SonarClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _get(self, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            msg = f"Analysis server request {endpoint} failed: {exc}"
            raise SonarError(msg) from exc
        if response.status_code in {401, 403}:
            msg = f"Analysis server rejected credentials ({response.status_code})"
            raise SonarError(msg)
        if response.status_code >= 400:
            msg = f"Analysis server returned {response.status_code} for {endpoint}"
            raise SonarError(msg)
        try:
            data = response.json()
        except ValueError as exc:
            msg = f"Analysis server sent a non-JSON reply for {endpoint}"
            raise SonarError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Analysis server sent an unexpected reply for {endpoint}"
            raise SonarError(msg)
        return data

    def _field(self, data: dict[str, Any], key: str, endpoint: str) -> Any:
        try:
            return data[key]
        except KeyError as exc:
            msg = f"Analysis server reply for {endpoint} has no '{key}'"
            raise SonarError(msg) from exc

    def wait_for_analysis(
        self, task_id: str, timeout: float, poll_interval: float
    ) -> str:
        """Poll the background task until it succeeds.

        Returns:
            The analysis id produced by the task.

        Raises:
            AnalysisTimeoutError: If the task is still pending after *timeout* seconds.
            SonarError: If the task ends FAILED or CANCELED.
        """
        deadline = time.monotonic() + timeout
        while True:
            task = self._field(self._get("/api/ce/task", {"id": task_id}), "task", "/api/ce/task")
            status = task.get("status", "")
            if status == "SUCCESS":
                logger.info(f"Analysis task {task_id} finished")
                return self._field(task, "analysisId", "/api/ce/task")
            if status not in _PENDING_TASK_STATES:
                msg = (
                    f"Analysis task {task_id} ended with status {status}: "
                    f"{task.get('errorMessage', 'no details')}"
                )
                raise SonarError(msg)
            if time.monotonic() >= deadline:
                msg = f"Analysis task {task_id} still {status} after {timeout:.0f}s"
                raise AnalysisTimeoutError(msg)
            logger.debug(f"Analysis task {task_id} is {status}, polling again")
            self._sleep(poll_interval)

    def quality_gate(self, analysis_id: str) -> QualityGateVerdict:
        """Fetch the quality-gate verdict for *analysis_id*."""
        endpoint = "/api/qualitygates/project_status"
        data = self._field(
            self._get(endpoint, {"analysisId": analysis_id}), "projectStatus", endpoint
        )
        conditions = [
            GateCondition(
                metric=c.get("metricKey", ""),
                status=c.get("status", ""),
                actual=c.get("actualValue"),
                threshold=c.get("errorThreshold"),
                comparator=c.get("comparator"),
            )
            for c in data.get("conditions", [])
        ]
        return QualityGateVerdict(
            status=data.get("status", "NONE"),
            analysis_id=analysis_id,
            conditions=conditions,
        )
