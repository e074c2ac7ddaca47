"""Error taxonomy surfaced to callers.

Each error carries a stable ``code`` so callers can map conditions to
responses without parsing messages. Extraction and normalization problems are
never raised through this hierarchy; they degrade into empty or partial data.
"""


class BilagsError(Exception):
    """Base error with a stable machine-readable code."""

    code = "bilags_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class DocumentNotFoundError(BilagsError):
    code = "not_found"

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class RepositoryUnavailableError(BilagsError):
    code = "db_not_ready"


class MailCredentialsMissingError(BilagsError):
    code = "imap_credentials_missing"

    def __init__(self) -> None:
        super().__init__("IMAP credentials missing (APP_IMAP_USER/APP_IMAP_PASSWORD)")


class MailSourceError(BilagsError):
    code = "imap_fetch_failed"


class OcrError(BilagsError):
    """OCR engine failure (missing key, HTTP error, engine-reported error)."""

    code = "ocr_failed"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class FileStoreError(BilagsError):
    code = "storage_error"
