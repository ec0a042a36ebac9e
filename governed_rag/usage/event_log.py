import json
import logging
import os
import threading
from datetime import datetime
from typing import List, Optional

from governed_rag.domain import TimeWindow, UsageEvent
from governed_rag.errors import StorageError

logger = logging.getLogger(__name__)


class UsageEventLog:
    """
    Append-only log of governed actions.

    Events are kept in arrival order in memory and, when a path is
    given, appended to a JSON Lines file.
    """

    def __init__(self, path: Optional[str] = None):

        self._lock = threading.Lock()
        self._events: List[UsageEvent] = []
        self._path = path

        if path:
            self._load()

    def _load(self):

        if not os.path.exists(self._path):
            return

        try:

            with open(self._path, "r") as f:
                self._events = [
                    UsageEvent.from_dict(json.loads(line))
                    for line in f
                    if line.strip()
                ]

        except (OSError, ValueError, KeyError) as e:
            raise StorageError(f"Usage log load failed: {e}") from e

        logger.info(
            "Usage log loaded",
            extra={"events": len(self._events)},
        )

    def append(self, event: UsageEvent) -> UsageEvent:

        # Same check with or without a file
        try:
            line = json.dumps(event.to_dict())
        except (TypeError, ValueError) as e:
            raise StorageError(f"Usage event is not serializable: {e}") from e

        with self._lock:

            if self._path:

                try:

                    directory = os.path.dirname(self._path)

                    if directory:
                        os.makedirs(directory, exist_ok=True)

                    with open(self._path, "a") as f:
                        f.write(line + "\n")

                except OSError as e:
                    raise StorageError(f"Usage log append failed: {e}") from e

            self._events.append(event)

        return event

    def events(
        self,
        client_address: Optional[str] = None,
        after: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[UsageEvent]:
        """Events with after < timestamp <= until, optionally per client."""

        with self._lock:
            snapshot = list(self._events)

        return [
            e for e in snapshot
            if (client_address is None or e.client_address == client_address)
            and (after is None or e.timestamp > after)
            and (until is None or e.timestamp <= until)
        ]

    def in_window(self, window: TimeWindow) -> List[UsageEvent]:

        with self._lock:
            snapshot = list(self._events)

        return [e for e in snapshot if window.contains(e.timestamp)]

    def __len__(self) -> int:
        return len(self._events)
