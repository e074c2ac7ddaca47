"""Document lifecycle controller.

Orchestrates intake, extraction, normalization and proposal building per
document and owns every status transition:

    RECEIVED -> PARSED -> READY / ROUTED -> POSTED

Intake is deduplicated by mail message id. Extraction problems never fail a
document or a batch; they leave empty or partial data behind.
"""

import imaplib
import logging
from collections.abc import Callable, Iterable

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.manual import ManualDocumentForm, manual_extraction
from bilags.extraction.schema import Extraction
from bilags.extraction.service import (
    heuristic_extraction,
    merge_extractions,
    normalize_extraction,
)
from bilags.lifecycle.models import (
    BatchReport,
    DocumentStatus,
    FetchCriteria,
    IngestedDocument,
    SourceInfo,
    StoredFile,
    utcnow,
)
from bilags.lifecycle.repository import DocumentRepository
from bilags.mail.imap import ImapMailSource, MailboxStatus, MailSource
from bilags.mail.message import ParsedMessage, parse_message
from bilags.ocr.acquirer import TextAcquirer
from bilags.proposal.builder import ProposalBuilder
from bilags.shared import metrics
from bilags.shared.config import Settings
from bilags.shared.errors import (
    DocumentNotFoundError,
    FileStoreError,
    MailSourceError,
    RepositoryUnavailableError,
)
from bilags.storage.file_store import FileStore

logger = logging.getLogger(__name__)

# Subject sent by the inbox UI when the user did not type a filter
DEFAULT_SUBJECT_PLACEHOLDER = "back office"
MANUAL_SENDER = "Manual Entry"


class DocumentController:
    """Drives documents through intake, extraction and routing.

    Args:
        settings: Application settings
        repository: Document storage
        file_store: Attachment storage
        acquirer: Text acquirer (native text + OCR)
        normalizer: Schema-constrained normalization provider
        builder: Proposal builder
        mail_source_factory: Creates a mail source; may raise MailCredentialsMissingError
    """

    def __init__(
        self,
        settings: Settings,
        repository: DocumentRepository,
        file_store: FileStore,
        acquirer: TextAcquirer,
        normalizer: NormalizationProvider,
        builder: ProposalBuilder,
        mail_source_factory: Callable[[Settings], MailSource] = ImapMailSource,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.file_store = file_store
        self.acquirer = acquirer
        self.normalizer = normalizer
        self.builder = builder
        self.mail_source_factory = mail_source_factory

    # ------------------------------------------------------------------ helpers

    def _require_ready(self) -> None:
        if not self.repository.is_ready():
            raise RepositoryUnavailableError("Document repository is not ready")

    def _load(self, document_id: str) -> IngestedDocument:
        self._require_ready()
        document = self.repository.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def _open_mail(self) -> MailSource:
        return self.mail_source_factory(self.settings)

    def _read_files(
        self,
        files: list[StoredFile],
        ocr_vendor: str | None = None,
        ocr_lang: str | None = None,
    ) -> list[tuple[StoredFile, str]]:
        """Text of every stored file; a failing file contributes empty text."""
        texts: list[tuple[StoredFile, str]] = []
        for stored in files:
            try:
                with self.file_store.local_path(stored.stored_as) as path:
                    text = self.acquirer.extract_text(path, ocr_vendor, ocr_lang)
            except Exception as e:
                logger.error(f"Extraction failed for {stored.filename}: {e}")
                text = ""
            texts.append((stored, text))
        return texts

    def _heuristic_extract(
        self,
        files: list[StoredFile],
        ocr_vendor: str | None = None,
        ocr_lang: str | None = None,
    ) -> Extraction:
        parts = [
            heuristic_extraction(text, self.settings)
            for _, text in self._read_files(files, ocr_vendor, ocr_lang)
        ]
        return merge_extractions(parts, self.settings)

    def _ensure_je_number(self, extraction: Extraction) -> Extraction:
        if not extraction.numbers.je_number:
            numbers = extraction.numbers.model_copy(
                update={"je_number": self.builder.numbers.je_number()}
            )
            extraction = extraction.model_copy(update={"numbers": numbers})
        return extraction

    def _apply(
        self,
        document: IngestedDocument,
        extraction: Extraction,
        status: DocumentStatus,
    ) -> IngestedDocument:
        document.extracted = extraction
        document.proposal = self.builder.build(
            extraction.header, extraction.lines, document.source.subject
        )
        document.status = status
        self.repository.save(document)
        logger.info(f"Document {document.id} -> {status.value}")
        return document

    # ------------------------------------------------------------------ intake

    def _ingest(
        self, message: ParsedMessage, criteria: FetchCriteria
    ) -> tuple[str, IngestedDocument | None]:
        subject_needle = criteria.subject.strip().lower()
        if subject_needle == DEFAULT_SUBJECT_PLACEHOLDER:
            subject_needle = ""
        from_needle = criteria.from_contains.strip().lower()
        if (subject_needle and subject_needle not in message.subject.lower()) or (
            from_needle and from_needle not in message.from_address.lower()
        ):
            return "no_match", None

        # Duplicates short-circuit before anything is written
        if message.message_id and self.repository.has_message(message.message_id):
            return "duplicate", None

        saved: list[StoredFile] = []
        for attachment in message.attachments:
            if attachment.kind is None:
                continue
            safe = attachment.safe_name()
            stored_as = self.file_store.save(attachment.content, safe, attachment.content_type)
            saved.append(
                StoredFile(
                    filename=safe,
                    stored_as=stored_as,
                    mimetype=attachment.content_type,
                    size=len(attachment.content),
                )
            )
        if not saved:
            return "no_files", None

        document = IngestedDocument(
            status=DocumentStatus.RECEIVED,
            source=SourceInfo(
                subject=message.subject,
                from_address=message.from_address,
                message_id=message.message_id,
                files=saved,
                received_at=message.date or utcnow(),
            ),
        )
        if not self.repository.insert_if_absent(document):
            return "duplicate", None

        extraction = self._heuristic_extract(saved)
        return "parsed", self._apply(document, extraction, DocumentStatus.PARSED)

    def ingest_message(
        self, raw: bytes, criteria: FetchCriteria | None = None
    ) -> IngestedDocument | None:
        """Ingest one raw mail message.

        Args:
            raw: Full message bytes
            criteria: Subject/sender filters (defaults match everything)

        Returns:
            The new document, or None when filtered, duplicate or without attachments
        """
        self._require_ready()
        outcome, document = self._ingest(parse_message(raw), criteria or FetchCriteria())
        metrics.documents_ingested_total.labels(outcome=outcome).inc()
        return document

    def fetch_mail(self, criteria: FetchCriteria | None = None) -> BatchReport:
        """Fetch a batch of messages and ingest the ones that match.

        Messages are processed sequentially, newest first, up to ``criteria.limit``.

        Returns:
            BatchReport with per-outcome counters

        Raises:
            MailCredentialsMissingError: If IMAP credentials are not configured
            RepositoryUnavailableError: If the repository is not ready
            MailSourceError: If the mailbox cannot be opened or searched
        """
        criteria = criteria or FetchCriteria(limit=self.settings.mail_fetch_limit)
        mail = self._open_mail()
        self._require_ready()
        report = BatchReport()

        with mail as source:
            refs = source.search(include_seen=criteria.include_seen)
            logger.info(f"Mail search returned {len(refs)} message(s); limit {criteria.limit}")

            for ref in refs[: criteria.limit]:
                report.scanned += 1
                try:
                    raw = source.fetch(ref)
                except (imaplib.IMAP4.error, OSError, MailSourceError) as e:
                    logger.error(f"Message {ref} could not be fetched: {e}")
                    report.failed += 1
                    metrics.documents_ingested_total.labels(outcome="failed").inc()
                    continue
                if not raw:
                    report.skipped_no_stream += 1
                    metrics.documents_ingested_total.labels(outcome="no_stream").inc()
                    continue
                try:
                    message = parse_message(raw)
                except Exception as e:
                    logger.warning(f"Message {ref} could not be parsed: {e}")
                    report.skipped_no_stream += 1
                    metrics.documents_ingested_total.labels(outcome="no_stream").inc()
                    continue

                try:
                    outcome, document = self._ingest(message, criteria)
                except FileStoreError as e:
                    logger.error(f"Message {ref} skipped, attachments not stored: {e.message}")
                    report.failed += 1
                    metrics.documents_ingested_total.labels(outcome="failed").inc()
                    continue
                except RepositoryUnavailableError:
                    raise
                except Exception as e:
                    logger.error(f"Message {ref} failed during intake: {e}")
                    report.failed += 1
                    metrics.documents_ingested_total.labels(outcome="failed").inc()
                    continue
                metrics.documents_ingested_total.labels(outcome=outcome).inc()
                if outcome == "parsed" and document is not None:
                    report.parsed += 1
                    report.document_ids.append(document.id)
                elif outcome == "no_match":
                    report.skipped_no_match += 1
                elif outcome == "no_files":
                    report.skipped_no_files += 1
                elif outcome == "duplicate":
                    report.skipped_duplicate += 1

        logger.info(
            f"Mail fetch done: scanned={report.scanned} parsed={report.parsed} "
            f"duplicates={report.skipped_duplicate}"
        )
        return report

    def mail_status(self) -> MailboxStatus:
        """Smoke-test the mailbox: unseen and total message counts."""
        with self._open_mail() as source:
            return source.status()

    def create_manual(self, form: ManualDocumentForm) -> IngestedDocument:
        """Create a PARSED document from a manually entered form."""
        self._require_ready()
        extraction = manual_extraction(form, self.builder.numbers)
        document = IngestedDocument(
            source=SourceInfo(subject=form.subject, from_address=MANUAL_SENDER),
        )
        self.repository.insert_if_absent(document)
        return self._apply(document, extraction, DocumentStatus.PARSED)

    # ------------------------------------------------------------------ re-processing

    def reextract(
        self,
        document_id: str,
        ocr_vendor: str | None = None,
        ocr_lang: str | None = None,
    ) -> IngestedDocument:
        """Re-OCR every stored file and rebuild extraction and proposal from scratch."""
        document = self._load(document_id)
        extraction = self._heuristic_extract(document.source.files, ocr_vendor, ocr_lang)
        return self._apply(document, self._ensure_je_number(extraction), DocumentStatus.PARSED)

    def llm_extract(self, document_id: str, force_reocr: bool = False) -> IngestedDocument:
        """Normalize the stored extraction with the configured LLM provider.

        The aggregated text is re-read from the files when forced or when no
        raw text was kept; each file's text is preceded by a ``=== FILE:<name> ===``
        banner. Without a usable provider the heuristic draft is kept.
        """
        document = self._load(document_id)
        draft = document.extracted or Extraction(currency=self.settings.home_currency)

        if force_reocr or not draft.raw_text:
            text = "".join(
                f"\n=== FILE:{stored.filename} ===\n{content}\n"
                for stored, content in self._read_files(document.source.files)
                if content
            )
        else:
            text = draft.raw_text

        extraction = normalize_extraction(self.normalizer, text, draft, self.settings)
        return self._apply(document, extraction, DocumentStatus.PARSED)

    def route(self, document_id: str) -> IngestedDocument:
        """Re-derive the proposal from the stored extraction and mark it READY."""
        document = self._load(document_id)
        extraction = document.extracted or Extraction(currency=self.settings.home_currency)
        return self._apply(document, self._ensure_je_number(extraction), DocumentStatus.READY)

    def link(
        self,
        document_id: str,
        journal_id: str | None = None,
        stock_move_ids: Iterable[str] = (),
        posted: bool = True,
    ) -> IngestedDocument:
        """Record ledger/inventory identifiers once the proposal was committed."""
        document = self._load(document_id)
        document.links.journal_id = journal_id
        document.links.stock_move_ids = list(stock_move_ids)
        document.status = DocumentStatus.POSTED if posted else DocumentStatus.ROUTED
        self.repository.save(document)
        logger.info(f"Document {document.id} linked ({document.status.value})")
        return document

    # ------------------------------------------------------------------ queries

    def get(self, document_id: str) -> IngestedDocument:
        return self._load(document_id)

    def list(
        self,
        search: str = "",
        statuses: Iterable[DocumentStatus] = (),
        limit: int = 200,
    ) -> list[IngestedDocument]:
        self._require_ready()
        return self.repository.list(search=search, statuses=statuses, limit=limit)
