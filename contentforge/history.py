"""
History sinks for contentforge.

The coordinator hands each finished GenerationResult, together with the
UsageEvents it produced, to a sink. Persistence and export belong to the
sink; the coordinator never reads history back.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Iterator

from contentforge.schemas import GenerationResult, UsageEvent


logger = logging.getLogger(__name__)


class HistorySink(ABC):
    """Abstract base class for history backends."""

    @abstractmethod
    def write(self, result: GenerationResult, usage_events: list[UsageEvent]) -> None:
        """Persist one generation and its usage events."""
        pass


class LoggingHistorySink(HistorySink):
    """
    Default sink: logs one summary line per generation and keeps nothing.

    Use JSONLHistorySink (or an external store) when results must persist.
    """

    def write(self, result: GenerationResult, usage_events: list[UsageEvent]) -> None:
        logger.info(
            "History: request %s, %d real, %d fallback, %d failed, %d usage events",
            result.request_id,
            result.real_provider_count,
            result.fallback_count,
            result.failed_count,
            len(usage_events),
        )


class InMemoryHistorySink(HistorySink):
    """
    In-memory history sink for testing.
    """

    def __init__(self):
        self.results: list[GenerationResult] = []
        self.usage_events: list[UsageEvent] = []
        self._lock = Lock()

    def write(self, result: GenerationResult, usage_events: list[UsageEvent]) -> None:
        with self._lock:
            self.results.append(result)
            self.usage_events.extend(usage_events)

    def events_for(self, request_id: str) -> list[UsageEvent]:
        with self._lock:
            return [event for event in self.usage_events if event.request_id == request_id]

    def clear(self) -> None:
        with self._lock:
            self.results.clear()
            self.usage_events.clear()

    def __len__(self) -> int:
        return len(self.results)


class JSONLHistorySink(HistorySink):
    """
    JSON Lines file-based history sink.

    Each line is one generation: the serialized result plus its usage events.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def write(self, result: GenerationResult, usage_events: list[UsageEvent]) -> None:
        """Append one record to the JSONL file."""
        record = {
            "result": result.to_dict(),
            "usage_events": [event.to_dict() for event in usage_events],
        }
        with self._lock:
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(record, default=str, ensure_ascii=False) + '\n')

    def read_all(self) -> Iterator[dict]:
        """Read raw records back, oldest first."""
        if not self.path.exists():
            return

        with open(self.path, 'r', encoding='utf-8') as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)
