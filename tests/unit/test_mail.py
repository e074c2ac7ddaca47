"""Unit tests for mail message parsing and the IMAP mail source."""

import imaplib
from email.message import EmailMessage
from unittest.mock import MagicMock, patch

import pytest

from bilags.mail.imap import ImapMailSource, MailboxStatus
from bilags.mail.message import Attachment, parse_message
from bilags.shared.config import Settings
from bilags.shared.errors import MailCredentialsMissingError, MailSourceError


def _message_with_attachments() -> bytes:
    msg = EmailMessage()
    msg["Subject"] = "Bilag: Faktura 2024-117"
    msg["From"] = "Nordic Parts <billing@nordicparts.dk>"
    msg["Message-ID"] = "<abc@nordicparts.dk>"
    msg["Date"] = "Tue, 05 Mar 2024 10:00:00 +0100"
    msg.set_content("Hej, se vedhæftede faktura.")
    msg.add_attachment(
        b"%PDF-1.4 fake", maintype="application", subtype="pdf", filename="faktura 117.pdf"
    )
    msg.add_attachment(b"\x89PNG", maintype="image", subtype="png", filename="kvittering.png")
    msg.add_attachment(b"PK\x03\x04", maintype="application", subtype="zip", filename="bundle.zip")
    return msg.as_bytes()


class TestParseMessage:
    """Tests for parse_message."""

    def test_headers_and_attachments(self) -> None:
        """Test decoded headers and every attachment part."""
        parsed = parse_message(_message_with_attachments())

        assert parsed.subject == "Bilag: Faktura 2024-117"
        assert "billing@nordicparts.dk" in parsed.from_address
        assert parsed.message_id == "<abc@nordicparts.dk>"
        assert parsed.date is not None
        assert parsed.date.year == 2024
        assert [a.filename for a in parsed.attachments] == [
            "faktura 117.pdf",
            "kvittering.png",
            "bundle.zip",
        ]
        assert parsed.attachments[0].content == b"%PDF-1.4 fake"
        assert [a.kind for a in parsed.attachments] == ["pdf", "image", None]

    def test_body_only_message(self) -> None:
        """Test that an inline body is not an attachment."""
        msg = EmailMessage()
        msg["Subject"] = "Hello"
        msg.set_content("no files")

        parsed = parse_message(msg.as_bytes())

        assert parsed.attachments == []
        assert parsed.message_id == ""
        assert parsed.date is None


class TestAttachment:
    """Tests for attachment kinds and safe names."""

    @pytest.mark.parametrize(
        ("filename", "content_type", "kind"),
        [
            ("scan.PDF", "application/octet-stream", "pdf"),
            ("", "application/pdf", "pdf"),
            ("photo.jpeg", "application/octet-stream", "image"),
            ("", "image/heic", "image"),
            ("notes.txt", "application/octet-stream", "text"),
            ("", "text/csv", "text"),
            ("archive.zip", "application/zip", None),
        ],
    )
    def test_kind(self, filename: str, content_type: str, kind: str | None) -> None:
        """Test classification by content type and extension."""
        assert Attachment(filename=filename, content_type=content_type).kind == kind

    def test_safe_name(self) -> None:
        """Test that unsafe characters are replaced."""
        assert Attachment(filename="faktura 117 (kopi).pdf").safe_name() == "faktura_117_kopi_.pdf"

    def test_nameless_attachment(self) -> None:
        """Test the timestamped name for attachments without a filename."""
        pdf = Attachment(content_type="application/pdf")
        image = Attachment(content_type="image/png")

        assert pdf.safe_name(now=1700000000.5) == "attachment-1700000000500.pdf"
        assert image.safe_name(now=1.0) == "attachment-1000.img"


@pytest.fixture
def imap_settings() -> Settings:
    """Create settings with IMAP credentials."""
    return Settings(
        imap_host="imap.example.dk",
        imap_port=993,
        imap_user="bilag@example.dk",
        imap_password="abcd efgh ijkl mnop",
        mailbox="INBOX",
    )


@pytest.fixture
def mock_conn() -> MagicMock:
    """Create mock IMAP connection."""
    conn = MagicMock()
    conn.login.return_value = ("OK", [b"Logged in"])
    conn.select.return_value = ("OK", [b"3"])
    return conn


class TestImapMailSource:
    """Tests for ImapMailSource with a mocked imaplib."""

    def test_missing_credentials(self) -> None:
        """Test that missing credentials are reported before connecting."""
        with pytest.raises(MailCredentialsMissingError):
            ImapMailSource(Settings(imap_user="", imap_password=""))

    @patch("bilags.mail.imap.imaplib.IMAP4_SSL")
    def test_connect_search_fetch(
        self, mock_ssl: MagicMock, imap_settings: Settings, mock_conn: MagicMock
    ) -> None:
        """Test read-only select, newest-first search and peek fetch."""
        mock_ssl.return_value = mock_conn
        mock_conn.uid.side_effect = [
            ("OK", [b"1 3 2"]),
            ("OK", [(b"3 (UID 3 BODY[] {3}", b"raw"), b")"]),
        ]

        with ImapMailSource(imap_settings) as source:
            refs = source.search(include_seen=True)
            raw = source.fetch(refs[0])

        mock_ssl.assert_called_once_with("imap.example.dk", 993, timeout=180.0)
        mock_conn.login.assert_called_once_with("bilag@example.dk", "abcdefghijklmnop")
        mock_conn.select.assert_called_once_with("INBOX", readonly=True)
        assert refs == ["3", "2", "1"]
        assert raw == b"raw"
        assert mock_conn.uid.call_args_list[0].args == ("SEARCH", None, "ALL")
        assert mock_conn.uid.call_args_list[1].args == ("FETCH", "3", "(BODY.PEEK[])")
        mock_conn.logout.assert_called_once()

    @patch("bilags.mail.imap.imaplib.IMAP4_SSL")
    def test_unseen_only(
        self, mock_ssl: MagicMock, imap_settings: Settings, mock_conn: MagicMock
    ) -> None:
        """Test the UNSEEN search."""
        mock_ssl.return_value = mock_conn
        mock_conn.uid.return_value = ("OK", [b""])

        with ImapMailSource(imap_settings) as source:
            assert source.search(include_seen=False) == []

        assert mock_conn.uid.call_args.args == ("SEARCH", None, "UNSEEN")

    @patch("bilags.mail.imap.imaplib.IMAP4_SSL")
    def test_fetch_without_body(
        self, mock_ssl: MagicMock, imap_settings: Settings, mock_conn: MagicMock
    ) -> None:
        """Test that a fetch without message data yields None."""
        mock_ssl.return_value = mock_conn
        mock_conn.uid.return_value = ("OK", [None])

        with ImapMailSource(imap_settings) as source:
            assert source.fetch("9") is None

    @patch("bilags.mail.imap.imaplib.IMAP4_SSL")
    def test_status(
        self, mock_ssl: MagicMock, imap_settings: Settings, mock_conn: MagicMock
    ) -> None:
        """Test unseen and total counts."""
        mock_ssl.return_value = mock_conn
        mock_conn.uid.return_value = ("OK", [b"4 5"])
        mock_conn.status.return_value = ("OK", [b'"INBOX" (MESSAGES 12)'])

        with ImapMailSource(imap_settings) as source:
            status = source.status()

        assert status == MailboxStatus(unseen=2, total=12)

    @patch("bilags.mail.imap.imaplib.IMAP4_SSL")
    def test_login_failure(
        self, mock_ssl: MagicMock, imap_settings: Settings, mock_conn: MagicMock
    ) -> None:
        """Test that an authentication error becomes MailSourceError."""
        mock_ssl.return_value = mock_conn
        mock_conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")

        with pytest.raises(MailSourceError) as exc_info:
            with ImapMailSource(imap_settings):
                pass
        assert exc_info.value.code == "imap_fetch_failed"

    @patch("bilags.mail.imap.imaplib.IMAP4")
    def test_plain_imap(self, mock_plain: MagicMock, mock_conn: MagicMock) -> None:
        """Test the non-TLS connection."""
        mock_plain.return_value = mock_conn
        settings = Settings(imap_tls=False, imap_port=143, imap_user="u", imap_password="p")

        with ImapMailSource(settings):
            pass

        assert mock_plain.call_args.args[1] == 143
