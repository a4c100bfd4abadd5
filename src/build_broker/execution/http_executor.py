"""Remote build executor over HTTP."""

from __future__ import annotations

import logging

import httpx

from build_broker.execution.base import BuildExecutionError, Deliverable
from build_broker.orchestrator.models import BuildJobSpec

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 900.0


class HttpBuildExecutor:
    """Posts a build spec to a generation service and returns its delivery URL."""

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": "build-broker/0.1 (executor)"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport,
        )

    async def execute(self, spec: BuildJobSpec) -> Deliverable:
        body = {
            "job_id": spec.job_id,
            "build_id": spec.build_id,
            "request_id": spec.request_id,
            "title": spec.title,
            "description": spec.description,
            "constraints": spec.constraints,
        }
        try:
            response = await self._client.post("/builds", json=body)
        except httpx.TimeoutException as error:
            logger.warning("Timeout executing build %s", spec.build_id)
            raise BuildExecutionError(f"Executor timed out for build {spec.build_id}.") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error executing build %s: %s", spec.build_id, error)
            raise BuildExecutionError(f"Executor call failed: {error}") from error

        if not response.is_success:
            raise BuildExecutionError(
                f"Executor returned HTTP {response.status_code}: {response.text[:200]}",
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise BuildExecutionError("Executor returned invalid JSON.") from error
        url = payload.get("delivery_url") if isinstance(payload, dict) else None
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise BuildExecutionError(f"Executor returned no usable delivery_url: {url!r}")
        return Deliverable(url=url)

    async def aclose(self) -> None:
        await self._client.aclose()
