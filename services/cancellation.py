"""
Cooperative cancellation tokens.

Long loops (CSV import, label batches) check a token between units of
work; nothing is interrupted mid-request. A JobCancellationToken also
polls the job document, so a cancel or delete issued from another
process is noticed within check_every records.
"""

import threading
from typing import Optional
import structlog

from exceptions import ImportCancelledError
from models.import_job import ImportJobStatus
from services.document_store import DocumentStore, IMPORT_JOBS

logger = structlog.get_logger(__name__)


class CancellationToken:
    """In-process cancel flag."""

    def __init__(self, name: str = ""):
        self.name = name
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelledError(self.name)


class JobCancellationToken(CancellationToken):
    """
    Cancel flag backed by the import job document.

    The job counts as cancelled when its document is gone or its status
    is cancelled. The store is read only on every check_every-th call to
    maybe_check(); check() always reads.
    """

    def __init__(self, store: DocumentStore, job_id: str, check_every: int = 50):
        super().__init__(name=job_id)
        self.store = store
        self.job_id = job_id
        self.check_every = max(1, check_every)
        self._calls = 0

    def check(self) -> None:
        """
        Read the job document now.

        Raises:
            ImportCancelledError: Job cancelled (deleted=False) or removed (deleted=True)
        """
        self.raise_if_cancelled()

        doc = self.store.get(IMPORT_JOBS, self.job_id)
        if doc is None:
            logger.info("import_job_deleted_detected", job_id=self.job_id)
            self.cancel()
            raise ImportCancelledError(self.job_id, deleted=True)
        if doc.get("status") == ImportJobStatus.CANCELLED.value:
            logger.info("import_job_cancel_detected", job_id=self.job_id)
            self.cancel()
            raise ImportCancelledError(self.job_id, deleted=False)

    def maybe_check(self) -> None:
        """check() on every check_every-th call; callers check() once up front."""
        self._calls += 1
        if self._calls % self.check_every == 0:
            self.check()
        else:
            self.raise_if_cancelled()


class TokenRegistry:
    """Named in-process tokens so a cancel request can reach a running loop."""

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def create(self, name: str) -> CancellationToken:
        with self._lock:
            token = CancellationToken(name)
            self._tokens[name] = token
            return token

    def cancel(self, name: str) -> bool:
        with self._lock:
            token = self._tokens.get(name)
        if token is None:
            return False
        token.cancel()
        return True

    def discard(self, name: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.pop(name, None)
