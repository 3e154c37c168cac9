"""Per-call telemetry: latency, attempts, refreshes and streamed chunks."""

import time
from typing import Any, Dict, Optional

from regis_client.utils.logger import logger


class RequestMetrics:
    """Track metrics for a single orchestrator call."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.attempts: int = 0
        self.auth_refreshes: int = 0
        self.chunk_count: int = 0
        self.response_length: int = 0

    def start_timer(self) -> None:
        self.start_time = time.monotonic()

    def stop_timer(self) -> None:
        self.end_time = time.monotonic()
        logger.debug(f"{self.endpoint} call took {self.get_latency_ms()}ms")

    def get_latency_ms(self) -> int:
        """
        Get the latency in milliseconds.

        Returns:
            Latency in milliseconds, or 0 if timer wasn't started/stopped
        """
        if self.start_time is None or self.end_time is None:
            return 0
        return int((self.end_time - self.start_time) * 1000)

    def record_attempt(self, attempt: int) -> None:
        self.attempts += 1

    def record_chunk(self, text: str) -> None:
        self.chunk_count += 1
        self.response_length += len(text)

    def format_stats(self) -> str:
        """
        Format metrics as a stats string.

        Returns:
            e.g. "[stats] endpoint=stream attempts=1 refreshes=0 chunks=12 latency=840 ms"
        """
        return (
            f"[stats] endpoint={self.endpoint} "
            f"attempts={self.attempts} "
            f"refreshes={self.auth_refreshes} "
            f"chunks={self.chunk_count} "
            f"latency={self.get_latency_ms()} ms"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "latency_ms": self.get_latency_ms(),
            "attempts": self.attempts,
            "auth_refreshes": self.auth_refreshes,
            "chunk_count": self.chunk_count,
            "response_length": self.response_length,
        }
