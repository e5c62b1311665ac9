"""
Loki client for pushing reconciliation events.

Handles the Loki push format (labels + log lines) and retries.
"""

import logging
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from .models import ReconcileEvent

logger = logging.getLogger(__name__)


class LokiPushError(Exception):
    """Raised when pushing to Loki fails."""
    pass


class LokiStream(BaseModel):
    """
    A Loki stream: one label set and its log lines.
    """

    stream: Dict[str, str]  # Labels
    values: List[List[str]]  # [[timestamp_ns, log_line], ...]


class LokiPushRequest(BaseModel):
    """Loki push API request format."""

    streams: List[LokiStream]


def build_push_request(events: List[ReconcileEvent]) -> LokiPushRequest:
    """Group events into one stream per distinct label set."""
    streams: Dict[str, LokiStream] = {}

    for event in events:
        labels = event.to_loki_labels()
        key = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        if key not in streams:
            streams[key] = LokiStream(stream=labels, values=[])
        timestamp_ns = str(int(event.timestamp.timestamp() * 1_000_000_000))
        streams[key].values.append([timestamp_ns, event.to_loki_log_line()])

    return LokiPushRequest(streams=list(streams.values()))


class LokiClient:
    """
    Client for pushing ReconcileEvents to Loki.

    Usage:
        async with LokiClient(loki_url="http://loki:3100") as client:
            await client.push_events(events)
    """

    def __init__(
        self,
        loki_url: str = "http://localhost:3100",
        timeout: float = 10.0,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Loki client.

        Args:
            loki_url: Base URL of Loki instance (e.g. "http://localhost:3100")
            timeout: HTTP request timeout in seconds
            max_retries: Number of attempts per push
            http_client: Pre-configured httpx client (optional)
        """
        self.loki_url = loki_url.rstrip("/")
        self.push_url = f"{self.loki_url}/loki/api/v1/push"
        self.timeout = timeout
        self.max_retries = max_retries
        self.client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def push_events(self, events: List[ReconcileEvent]) -> None:
        """
        Push events to Loki.

        Raises:
            LokiPushError: If push fails after retries
        """
        if not events:
            return

        push_request = build_push_request(events)
        last_error = "no attempt made"

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.client.post(
                    self.push_url,
                    json=push_request.model_dump(),
                )
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(f"Loki push attempt {attempt} failed: {e}")
                continue

            if response.is_success:
                logger.debug(
                    f"Pushed {len(events)} event(s) to Loki in "
                    f"{len(push_request.streams)} stream(s)"
                )
                return

            last_error = f"status {response.status_code}: {response.text}"
            logger.warning(f"Loki push attempt {attempt} returned {last_error}")

        raise LokiPushError(
            f"Failed to push events to Loki after {self.max_retries} attempts: {last_error}"
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
