"""Unit tests for the in-memory document repository."""

from datetime import datetime, timedelta, timezone

import pytest

from bilags.lifecycle.models import DocumentStatus, IngestedDocument, SourceInfo
from bilags.lifecycle.repository import InMemoryDocumentRepository
from bilags.shared.errors import RepositoryUnavailableError

BASE_TIME = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


def make_document(
    subject: str = "Bilag: invoice",
    message_id: str = "",
    status: DocumentStatus = DocumentStatus.PARSED,
    age_minutes: int = 0,
) -> IngestedDocument:
    return IngestedDocument(
        status=status,
        source=SourceInfo(subject=subject, message_id=message_id),
        created_at=BASE_TIME - timedelta(minutes=age_minutes),
    )


@pytest.fixture
def repository() -> InMemoryDocumentRepository:
    """Create an empty repository."""
    return InMemoryDocumentRepository()


class TestInsert:
    """Tests for insert_if_absent and has_message."""

    def test_duplicate_message_id(self, repository: InMemoryDocumentRepository) -> None:
        """Test that a second document with the same message id is rejected."""
        first = make_document(message_id="<a@x>")
        second = make_document(message_id="<a@x>")

        assert repository.insert_if_absent(first) is True
        assert repository.insert_if_absent(second) is False
        assert repository.has_message("<a@x>") is True
        assert repository.get(second.id) is None

    def test_empty_message_id_always_inserted(
        self, repository: InMemoryDocumentRepository
    ) -> None:
        """Test that manual documents without a message id never collide."""
        assert repository.insert_if_absent(make_document()) is True
        assert repository.insert_if_absent(make_document()) is True
        assert repository.has_message("") is False
        assert len(repository.list()) == 2


class TestGetSave:
    """Tests for get and save."""

    def test_get_returns_copy(self, repository: InMemoryDocumentRepository) -> None:
        """Test that mutating a fetched document does not change the store."""
        document = make_document(subject="original")
        repository.insert_if_absent(document)

        fetched = repository.get(document.id)
        assert fetched is not None
        fetched.source.subject = "changed"

        stored = repository.get(document.id)
        assert stored is not None
        assert stored.source.subject == "original"

    def test_save_updates_timestamp(self, repository: InMemoryDocumentRepository) -> None:
        """Test that save persists changes and refreshes updated_at."""
        document = make_document()
        document.updated_at = BASE_TIME
        repository.insert_if_absent(document)

        document.status = DocumentStatus.READY
        repository.save(document)

        stored = repository.get(document.id)
        assert stored is not None
        assert stored.status == DocumentStatus.READY
        assert stored.updated_at > BASE_TIME

    def test_unknown_id(self, repository: InMemoryDocumentRepository) -> None:
        """Test that an unknown id yields None."""
        assert repository.get("missing") is None


class TestList:
    """Tests for list filters and ordering."""

    @pytest.fixture
    def populated(self, repository: InMemoryDocumentRepository) -> InMemoryDocumentRepository:
        """Repository with three documents of different ages."""
        repository.insert_if_absent(make_document("Bilag: Faktura 1", age_minutes=30))
        repository.insert_if_absent(
            make_document("Bilag: Kvittering", status=DocumentStatus.POSTED, age_minutes=20)
        )
        repository.insert_if_absent(
            make_document("Bilag: Faktura 2", status=DocumentStatus.READY, age_minutes=10)
        )
        return repository

    def test_newest_first(self, populated: InMemoryDocumentRepository) -> None:
        """Test ordering by creation time."""
        subjects = [d.source.subject for d in populated.list()]
        assert subjects == ["Bilag: Faktura 2", "Bilag: Kvittering", "Bilag: Faktura 1"]

    def test_search_is_case_insensitive(self, populated: InMemoryDocumentRepository) -> None:
        """Test subject substring search."""
        subjects = [d.source.subject for d in populated.list(search="FAKTURA")]
        assert subjects == ["Bilag: Faktura 2", "Bilag: Faktura 1"]

    def test_status_filter(self, populated: InMemoryDocumentRepository) -> None:
        """Test filtering by a set of statuses."""
        documents = populated.list(statuses=[DocumentStatus.READY, DocumentStatus.POSTED])
        assert {d.status for d in documents} == {DocumentStatus.READY, DocumentStatus.POSTED}

    def test_limit(self, populated: InMemoryDocumentRepository) -> None:
        """Test that the limit keeps the newest documents."""
        documents = populated.list(limit=1)
        assert [d.source.subject for d in documents] == ["Bilag: Faktura 2"]


def test_closed_repository(repository: InMemoryDocumentRepository) -> None:
    """Test that every operation fails once the repository is closed."""
    repository.close()

    assert repository.is_ready() is False
    with pytest.raises(RepositoryUnavailableError) as exc_info:
        repository.list()
    assert exc_info.value.code == "db_not_ready"
    with pytest.raises(RepositoryUnavailableError):
        repository.insert_if_absent(make_document())
