import logging
import threading
from typing import Optional

from governed_rag.config import CLEANUP_INTERVAL_SECONDS
from governed_rag.errors import GovernedRagError
from governed_rag.memory.sessions import DocumentSessionManager

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """
    Background thread that expires document sessions on a fixed interval.

    Runs independently of any request; stop() waits for the current pass.
    """

    def __init__(
        self,
        sessions: DocumentSessionManager,
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self._sessions = sessions
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):

        if self._interval <= 0:
            logger.info("Background cleanup disabled")
            return

        if self.running:
            return

        self._stop.clear()

        self._thread = threading.Thread(
            target=self._run,
            name="document-cleanup",
            daemon=True,
        )
        self._thread.start()

        logger.info(
            "Background cleanup started",
            extra={"interval_seconds": self._interval},
        )

    def _run(self):

        while not self._stop.wait(self._interval):

            try:
                self._sessions.cleanup_expired()

            except GovernedRagError as e:
                # Expired sessions stay in place and the next pass retries
                logger.error(
                    "Background cleanup failed",
                    extra={"error": str(e), "error_type": type(e).__name__},
                    exc_info=True,
                )

    def stop(self, timeout: float = 5.0):

        self._stop.set()

        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        logger.info("Background cleanup stopped")
