"""Document repository.

The controller only depends on the ``DocumentRepository`` protocol; the
in-memory implementation backs tests, the CLI and single-process workers.
"""

import logging
import threading
from collections.abc import Iterable
from typing import Protocol

from bilags.lifecycle.models import DocumentStatus, IngestedDocument, utcnow
from bilags.shared.errors import RepositoryUnavailableError

logger = logging.getLogger(__name__)


class DocumentRepository(Protocol):
    """Storage for ingested documents."""

    def is_ready(self) -> bool: ...

    def has_message(self, message_id: str) -> bool: ...

    def insert_if_absent(self, document: IngestedDocument) -> bool: ...

    def get(self, document_id: str) -> IngestedDocument | None: ...

    def save(self, document: IngestedDocument) -> None: ...

    def list(
        self,
        search: str = "",
        statuses: Iterable[DocumentStatus] = (),
        limit: int = 200,
    ) -> list[IngestedDocument]: ...


class InMemoryDocumentRepository:
    """Thread-safe dict-backed repository.

    ``insert_if_absent`` performs the message-id check and the insert under
    one lock, so concurrent intake of the same message stores it once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, IngestedDocument] = {}
        self._by_message: dict[str, str] = {}
        self._ready = True

    def close(self) -> None:
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def _check_ready(self) -> None:
        if not self._ready:
            raise RepositoryUnavailableError("Document repository is not ready")

    def has_message(self, message_id: str) -> bool:
        self._check_ready()
        with self._lock:
            return bool(message_id) and message_id in self._by_message

    def insert_if_absent(self, document: IngestedDocument) -> bool:
        """Insert unless another document has the same message id.

        Documents without a message id (manual entry) are always inserted.

        Returns:
            True if inserted, False if it was a duplicate
        """
        self._check_ready()
        message_id = document.source.message_id
        with self._lock:
            if message_id and message_id in self._by_message:
                return False
            self._documents[document.id] = document.model_copy(deep=True)
            if message_id:
                self._by_message[message_id] = document.id
        return True

    def get(self, document_id: str) -> IngestedDocument | None:
        self._check_ready()
        with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    def save(self, document: IngestedDocument) -> None:
        self._check_ready()
        document.updated_at = utcnow()
        with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)

    def list(
        self,
        search: str = "",
        statuses: Iterable[DocumentStatus] = (),
        limit: int = 200,
    ) -> list[IngestedDocument]:
        """Newest first, optionally filtered by subject substring and status."""
        self._check_ready()
        wanted = set(statuses)
        needle = search.lower()
        with self._lock:
            documents = list(self._documents.values())
        documents = [
            d
            for d in documents
            if (not needle or needle in d.source.subject.lower())
            and (not wanted or d.status in wanted)
        ]
        documents.sort(key=lambda d: d.created_at, reverse=True)
        return [d.model_copy(deep=True) for d in documents[:limit]]
