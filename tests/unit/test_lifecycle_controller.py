"""Unit tests for the document lifecycle controller.

Tests cover:
- Mail batch intake, filters and message-id deduplication
- Status transitions (PARSED, READY, ROUTED, POSTED)
- Manual entry, re-extraction and LLM normalization
- Error codes surfaced to callers
"""

import imaplib
from datetime import date
from email.message import EmailMessage
from pathlib import Path
from types import TracebackType
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.manual import ManualDocumentForm, ManualLine
from bilags.extraction.service import FALLBACK_NOTE
from bilags.lifecycle.controller import DocumentController
from bilags.lifecycle.models import DocumentStatus, FetchCriteria
from bilags.lifecycle.repository import InMemoryDocumentRepository
from bilags.mail.imap import MailboxStatus
from bilags.ocr.acquirer import TextAcquirer
from bilags.ocr.base import OCRResult
from bilags.proposal.builder import ProposalBuilder
from bilags.proposal.numbers import SequenceNumberGenerator
from bilags.shared.config import Settings
from bilags.shared.errors import (
    DocumentNotFoundError,
    MailCredentialsMissingError,
    MailSourceError,
    OcrError,
    RepositoryUnavailableError,
)
from bilags.storage.file_store import LocalFileStore

INVOICE_TEXT = (
    "Nordic Parts ApS\n"
    "Faktura nr: 2024-117\n"
    "Dato: 05.03.2024\n"
    "ABC-1234 USB cable 2 50,00 100,00\n"
    "Moms 25,00\n"
    "Total inkl. moms 125,00\n"
)


def make_message(
    message_id: str,
    subject: str = "Bilag: invoice",
    sender: str = "billing@nordicparts.dk",
    attachment: str | None = INVOICE_TEXT,
    filename: str = "invoice.txt",
) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = "bilag@example.dk"
    msg["Message-ID"] = message_id
    msg["Date"] = "Tue, 05 Mar 2024 10:00:00 +0100"
    msg.set_content("See attached.")
    if attachment is not None:
        msg.add_attachment(
            attachment.encode("utf-8"), maintype="text", subtype="plain", filename=filename
        )
    return msg.as_bytes()


class FakeMailSource:
    """Mailbox holding raw messages by reference, newest last."""

    def __init__(self, messages: dict[str, bytes | None]) -> None:
        self.messages = messages
        self.opened = 0

    def __enter__(self) -> "FakeMailSource":
        self.opened += 1
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        return None

    def search(self, include_seen: bool = True) -> list[str]:
        return list(reversed(self.messages))

    def fetch(self, message_ref: str) -> bytes | None:
        return self.messages[message_ref]

    def status(self) -> MailboxStatus:
        return MailboxStatus(unseen=1, total=len(self.messages))


class BrokenFetchMailSource(FakeMailSource):
    """Mailbox whose fetch of one message raises."""

    def __init__(
        self, messages: dict[str, bytes | None], broken_ref: str, error: Exception
    ) -> None:
        super().__init__(messages)
        self.broken_ref = broken_ref
        self.error = error

    def fetch(self, message_ref: str) -> bytes | None:
        if message_ref == self.broken_ref:
            raise self.error
        return super().fetch(message_ref)


class NullEngine:
    name = "null"

    def is_available(self) -> bool:
        return False

    def recognize(self, path: Path, lang: str) -> OCRResult:
        return OCRResult(text="", success=False, error="no engine")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(upload_dir=tmp_path / "uploads", imap_user="u", imap_password="p")


@pytest.fixture
def mailbox() -> FakeMailSource:
    """Create a mailbox with one invoice."""
    return FakeMailSource({"1": make_message("<inv-1@nordicparts.dk>")})


@pytest.fixture
def normalizer() -> MagicMock:
    """Create an unconfigured normalization provider."""
    provider = MagicMock(spec=NormalizationProvider)
    provider.normalize.return_value = None
    provider.provider_name = "fake"
    return provider


@pytest.fixture
def repository() -> InMemoryDocumentRepository:
    """Create an empty repository."""
    return InMemoryDocumentRepository()


@pytest.fixture
def controller(
    settings: Settings,
    mailbox: FakeMailSource,
    normalizer: MagicMock,
    repository: InMemoryDocumentRepository,
) -> DocumentController:
    """Create a controller wired to fakes."""
    return DocumentController(
        settings=settings,
        repository=repository,
        file_store=LocalFileStore(settings.upload_dir),
        acquirer=TextAcquirer(settings, NullEngine(), NullEngine()),
        normalizer=normalizer,
        builder=ProposalBuilder(
            settings,
            numbers=SequenceNumberGenerator(day="20240305"),
            today=lambda: date(2024, 3, 5),
        ),
        mail_source_factory=lambda _settings: mailbox,
    )


class TestFetchMail:
    """Tests for mail batch intake."""

    def test_invoice_is_parsed(self, controller: DocumentController) -> None:
        """Test that a matching message becomes a PARSED document."""
        report = controller.fetch_mail()

        assert report.scanned == 1
        assert report.parsed == 1
        assert report.imported == 1
        document = controller.get(report.document_ids[0])
        assert document.status is DocumentStatus.PARSED
        assert document.source.message_id == "<inv-1@nordicparts.dk>"
        assert document.source.files[0].filename == "invoice.txt"
        assert document.extracted is not None
        assert document.extracted.numbers.invoice_no == "2024-117"
        assert document.extracted.date == "2024-03-05"
        assert document.proposal is not None
        assert document.proposal.journal.is_balanced
        assert document.proposal.journal.total_debit == 100.0
        assert len(document.proposal.stock_moves) == 1

    def test_same_message_twice_is_stored_once(
        self, controller: DocumentController, repository: InMemoryDocumentRepository
    ) -> None:
        """Test idempotent intake across two batch runs."""
        first = controller.fetch_mail()
        second = controller.fetch_mail()

        assert first.parsed == 1
        assert second.parsed == 0
        assert second.skipped_duplicate == 1
        assert len(repository.list()) == 1

    def test_subject_filter(self, controller: DocumentController) -> None:
        """Test that a non-matching subject is skipped."""
        report = controller.fetch_mail(FetchCriteria(subject="kreditnota"))

        assert report.skipped_no_match == 1
        assert report.parsed == 0

    def test_placeholder_subject_matches_everything(
        self, controller: DocumentController
    ) -> None:
        """Test that the 'back office' placeholder disables the subject filter."""
        report = controller.fetch_mail(FetchCriteria(subject="Back Office"))

        assert report.parsed == 1

    def test_sender_filter(self, controller: DocumentController) -> None:
        """Test the sender substring filter."""
        assert controller.fetch_mail(FetchCriteria(from_contains="nordicparts")).parsed == 1

    def test_message_without_attachment(
        self, controller: DocumentController, mailbox: FakeMailSource
    ) -> None:
        """Test that a message without readable attachments is skipped."""
        mailbox.messages = {"7": make_message("<plain@x>", attachment=None)}

        report = controller.fetch_mail()

        assert report.skipped_no_files == 1

    def test_empty_fetch_and_limit(
        self, controller: DocumentController, mailbox: FakeMailSource
    ) -> None:
        """Test empty message bodies and the scan limit."""
        mailbox.messages = {
            "1": make_message("<a@x>"),
            "2": make_message("<b@x>"),
            "3": None,
        }

        report = controller.fetch_mail(FetchCriteria(limit=2))

        assert report.scanned == 2
        assert report.skipped_no_stream == 1
        assert report.parsed == 1

    def test_extraction_failure_does_not_abort_batch(
        self, controller: DocumentController, mailbox: FakeMailSource
    ) -> None:
        """Test that an OCR error leaves a PARSED document with empty data."""
        controller.acquirer = MagicMock(spec=TextAcquirer)
        controller.acquirer.extract_text.side_effect = OcrError("engine down")
        mailbox.messages = {"1": make_message("<a@x>"), "2": make_message("<b@x>")}

        report = controller.fetch_mail()

        assert report.parsed == 2
        document = controller.get(report.document_ids[0])
        assert document.status is DocumentStatus.PARSED
        assert document.extracted is not None
        assert document.extracted.lines == []
        assert document.proposal is not None
        assert document.proposal.journal.lines == []

    @pytest.mark.parametrize(
        "error",
        [OSError("connection reset"), imaplib.IMAP4.abort("socket error"), MailSourceError("x")],
    )
    def test_fetch_failure_does_not_abort_batch(
        self, controller: DocumentController, error: Exception
    ) -> None:
        """Test that a message whose fetch raises is counted and the rest still run."""
        mailbox = BrokenFetchMailSource(
            {
                "1": make_message("<a@x>"),
                "2": make_message("<b@x>"),
                "3": make_message("<c@x>"),
            },
            broken_ref="2",
            error=error,
        )
        controller.mail_source_factory = lambda _settings: mailbox

        report = controller.fetch_mail()

        assert report.scanned == 3
        assert report.failed == 1
        assert report.parsed == 2
        messages = {controller.get(i).source.message_id for i in report.document_ids}
        assert messages == {"<a@x>", "<c@x>"}

    def test_unexpected_intake_error_does_not_abort_batch(
        self, controller: DocumentController, mailbox: FakeMailSource
    ) -> None:
        """Test that an unexpected error while ingesting one message is counted."""
        real_build = controller.builder.build
        calls: list[str] = []

        def build_once_broken(*args: Any, **kwargs: Any) -> Any:
            calls.append("build")
            if len(calls) == 1:
                raise RuntimeError("unexpected")
            return real_build(*args, **kwargs)

        mailbox.messages = {"1": make_message("<a@x>"), "2": make_message("<b@x>")}

        with patch.object(controller.builder, "build", side_effect=build_once_broken):
            report = controller.fetch_mail()

        assert report.scanned == 2
        assert report.failed == 1
        assert report.parsed == 1

    def test_missing_credentials(self, controller: DocumentController) -> None:
        """Test that missing IMAP credentials surface as an error code."""

        def no_credentials(_settings: Settings) -> FakeMailSource:
            raise MailCredentialsMissingError()

        controller.mail_source_factory = no_credentials

        with pytest.raises(MailCredentialsMissingError) as exc_info:
            controller.fetch_mail()
        assert exc_info.value.code == "imap_credentials_missing"

    def test_repository_not_ready(
        self, controller: DocumentController, repository: InMemoryDocumentRepository
    ) -> None:
        """Test the db_not_ready error."""
        repository.close()

        with pytest.raises(RepositoryUnavailableError) as exc_info:
            controller.fetch_mail()
        assert exc_info.value.code == "db_not_ready"

    def test_mail_status(self, controller: DocumentController) -> None:
        """Test the mailbox smoke test."""
        assert controller.mail_status() == MailboxStatus(unseen=1, total=1)

    def test_ingest_single_message(self, controller: DocumentController) -> None:
        """Test ingesting one raw message outside a batch."""
        document = controller.ingest_message(make_message("<single@nordicparts.dk>"))

        assert document is not None
        assert document.status is DocumentStatus.PARSED
        assert controller.ingest_message(make_message("<single@nordicparts.dk>")) is None

    def test_ingest_single_message_filtered(self, controller: DocumentController) -> None:
        """Test that criteria apply to a single message."""
        raw = make_message("<other@nordicparts.dk>", subject="Nyhedsbrev")

        assert controller.ingest_message(raw, FetchCriteria(subject="bilag")) is None
        assert controller.list() == []


class TestDocumentTransitions:
    """Tests for routing, linking and re-processing."""

    def _ingest(self, controller: DocumentController) -> str:
        return controller.fetch_mail().document_ids[0]

    def test_route_marks_ready(self, controller: DocumentController) -> None:
        """Test that routing rebuilds the proposal and keeps the journal number."""
        document_id = self._ingest(controller)
        before = controller.get(document_id).proposal

        routed = controller.route(document_id)

        assert routed.status is DocumentStatus.READY
        assert routed.extracted is not None
        assert routed.extracted.numbers.je_number is not None
        assert routed.proposal is not None
        assert before is not None
        assert routed.proposal.journal.je_number == routed.extracted.numbers.je_number
        assert routed.proposal.journal.lines == before.journal.lines

        again = controller.route(document_id).proposal
        assert again is not None
        assert again.journal.je_number == routed.proposal.journal.je_number

    def test_link_posted_and_routed(self, controller: DocumentController) -> None:
        """Test recording ledger identifiers."""
        document_id = self._ingest(controller)

        posted = controller.link(document_id, journal_id="JE-1", stock_move_ids=["SM-1"])
        assert posted.status is DocumentStatus.POSTED
        assert posted.links.journal_id == "JE-1"
        assert posted.links.stock_move_ids == ["SM-1"]

        routed = controller.link(document_id, journal_id="JE-1", posted=False)
        assert routed.status is DocumentStatus.ROUTED

    def test_reextract_recomputes(self, controller: DocumentController) -> None:
        """Test that re-extraction rebuilds from the stored files."""
        document_id = self._ingest(controller)

        document = controller.reextract(document_id, ocr_vendor="tesseract", ocr_lang="dan")

        assert document.status is DocumentStatus.PARSED
        assert document.extracted is not None
        assert document.extracted.numbers.invoice_no == "2024-117"
        assert document.extracted.numbers.je_number is not None

    def test_llm_extract_without_provider_keeps_draft(
        self, controller: DocumentController, normalizer: MagicMock
    ) -> None:
        """Test graceful degradation of LLM normalization."""
        document_id = self._ingest(controller)
        draft = controller.get(document_id).extracted

        document = controller.llm_extract(document_id)

        assert document.extracted is not None
        assert draft is not None
        assert document.extracted.notes == FALLBACK_NOTE
        assert document.extracted.lines == draft.lines
        assert document.extracted.totals == draft.totals
        normalizer.normalize.assert_called_once()

    def test_llm_extract_force_reocr_uses_file_banners(
        self, controller: DocumentController, normalizer: MagicMock
    ) -> None:
        """Test the aggregated text handed to the provider."""
        document_id = self._ingest(controller)

        controller.llm_extract(document_id, force_reocr=True)

        text = normalizer.normalize.call_args.args[0]
        assert text.startswith("\n=== FILE:invoice.txt ===\n")
        assert "Faktura nr: 2024-117" in text

    @pytest.mark.parametrize("operation", ["get", "route", "reextract", "llm_extract", "link"])
    def test_unknown_document(self, controller: DocumentController, operation: str) -> None:
        """Test the not_found error for every per-document operation."""
        with pytest.raises(DocumentNotFoundError) as exc_info:
            getattr(controller, operation)("missing")
        assert exc_info.value.code == "not_found"


class TestManualAndQueries:
    """Tests for manual entry and listing."""

    def test_create_manual(self, controller: DocumentController) -> None:
        """Test that a manual form becomes a PARSED document with a proposal."""
        form = ManualDocumentForm(
            subject="Office supplies",
            supplier_name="Kontorland",
            lines=[ManualLine(desc="Paper", qty=2, unit_price=50.0)],
        )

        document = controller.create_manual(form)

        assert document.status is DocumentStatus.PARSED
        assert document.source.from_address == "Manual Entry"
        assert document.proposal is not None
        assert document.proposal.journal.total_credit == 125.0
        assert document.proposal.journal.is_balanced
        assert controller.get(document.id).status is DocumentStatus.PARSED

    def test_list_filters(self, controller: DocumentController) -> None:
        """Test subject search and status filter."""
        controller.create_manual(ManualDocumentForm(subject="Office supplies"))
        document_id = controller.fetch_mail().document_ids[0]
        controller.route(document_id)

        assert len(controller.list()) == 2
        assert [d.source.subject for d in controller.list(search="office")] == [
            "Office supplies"
        ]
        ready = controller.list(statuses=[DocumentStatus.READY])
        assert [d.id for d in ready] == [document_id]
