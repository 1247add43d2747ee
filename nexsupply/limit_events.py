import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from .models import LimitEvent

logger = logging.getLogger(__name__)

LOG_DIR = Path(os.environ.get("NEXSUPPLY_LOG_DIR", "logs"))
LIMIT_EVENTS_PATH = LOG_DIR / "limit-events.ndjson"


class LimitEventStore:
    """Append-only sink for quota hits and upgrade-prompt clicks."""

    def __init__(self, path: Union[str, Path] = LIMIT_EVENTS_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, event: LimitEvent) -> Optional[str]:
        """Store one event. Returns None on success, or a warning when the store is unavailable."""
        line = event.model_dump_json(by_alias=True, exclude_none=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to record limit event to {self.path}: {e}")
            return "Limit event store unavailable; event not recorded"
        return None

    def recent(self, limit: int = 200) -> List[LimitEvent]:
        """Newest-first events, at most ``limit``."""
        if not self.path.exists():
            return []

        events: List[LimitEvent] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(LimitEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning(f"Skipping unreadable limit event in {self.path}")
        events.reverse()
        return events[:limit]


limit_event_store = LimitEventStore()


def get_limit_event_store() -> LimitEventStore:
    return limit_event_store
