"""
Remote caller helper: start a job, follow its event stream, then poll for the result.

The stream only carries progress; the scene list is always read from the result
endpoint, which is polled every 2 s until the job ends or an hour has passed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from services.errors import PollTimeout, StoryboardError

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0
POLL_CEILING_SECONDS = 60 * 60

OnProgress = Callable[[str], None]


def parse_sse_block(block: str) -> tuple[str, dict[str, Any]] | None:
    """Parse one blank-line-delimited SSE block. Comments and keep-alives yield None."""
    event = "message"
    data_lines: list[str] = []
    for line in block.splitlines():
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value.strip()
        elif field == "data":
            data_lines.append(value)
    if not data_lines:
        return None
    try:
        return event, json.loads("".join(data_lines))
    except json.JSONDecodeError:
        return None


class StoryboardClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        poll_ceiling: float = POLL_CEILING_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(30.0, read=None))
        self._headers = {"Authorization": f"Bearer {token}"}
        self._poll_interval = poll_interval
        self._poll_ceiling = poll_ceiling
        self._sleep = sleep
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post("/api/storyboard/generate/start", json=payload, headers=self._headers)
        if response.status_code >= 400:
            raise StoryboardError(_error_message(response, "Could not start storyboard generation."))
        return response.json()

    async def stream_events(self, job_id: str, on_progress: OnProgress) -> None:
        """Relay progress messages until a terminal event. A ``failed`` event raises."""
        async with self._client.stream(
            "GET", f"/api/storyboard/jobs/{job_id}/events", headers=self._headers
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise StoryboardError(_error_message(response, "Could not open the progress stream."))
            buffer = ""
            async for chunk in response.aiter_text():
                buffer += chunk.replace("\r\n", "\n")
                while "\n\n" in buffer:
                    block, buffer = buffer.split("\n\n", 1)
                    parsed = parse_sse_block(block)
                    if parsed is None:
                        continue
                    event, data = parsed
                    if data.get("message"):
                        on_progress(data["message"])
                    if event == "failed":
                        raise StoryboardError(data.get("error") or data.get("message") or "Storyboard generation failed.")
                    if event == "completed":
                        return

    async def wait_for_result(self, job_id: str, on_progress: OnProgress) -> dict[str, Any]:
        deadline = self._clock() + self._poll_ceiling
        while self._clock() < deadline:
            response = await self._client.get(f"/api/storyboard/jobs/{job_id}/result", headers=self._headers)
            data = response.json() if response.content else {}
            if response.status_code == 202 or data.get("status") == "running":
                if data.get("message"):
                    on_progress(data["message"])
                await self._sleep(self._poll_interval)
                continue
            if response.status_code >= 400 or data.get("status") == "failed":
                raise StoryboardError(_error_message(response, "Storyboard processing failed."))
            if data.get("status") == "completed" and isinstance(data.get("scenes"), list):
                return data
            raise StoryboardError("Invalid job result returned by the server.")
        raise PollTimeout(f"Timed out waiting for storyboard job {job_id}.")

    async def generate(self, payload: dict[str, Any], on_progress: OnProgress | None = None) -> dict[str, Any]:
        """Start a job and return its completed result (``scenes`` and ``project_id``)."""
        report = on_progress or (lambda _m: None)
        started = await self.start(payload)
        if started.get("message"):
            report(started["message"])
        try:
            await self.stream_events(started["job_id"], report)
        except (StoryboardError, httpx.HTTPError) as exc:
            logger.info("[storyboard_client] Stream ended early for job %s: %s", started["job_id"], exc)
            report(str(exc) or "Progress stream unavailable. Still monitoring...")
        return await self.wait_for_result(started["job_id"], report)


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        return data.get("error") or data.get("detail") or data.get("message") or default
    return default
