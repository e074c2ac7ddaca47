"""Shared configuration management for the bilag intake pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_OCR_VENDOR=tesseract
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="bilags-intake",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )
    metrics_port: int | None = Field(
        default=None,
        description="Expose Prometheus metrics from the worker on this port",
    )

    # Accounting defaults
    home_currency: str = Field(
        default="DKK",
        description="Currency assumed when a document names none (or only 'kr')",
    )
    main_warehouse: str = Field(
        default="MAIN",
        description="Destination warehouse code for proposed stock receipts",
    )
    payable_account: str = Field(default="1000", description="Payment/payable account")
    inventory_account: str = Field(default="1400", description="Inventory receipt account")
    expense_account: str = Field(default="5500", description="Generic expense account")

    # OCR configuration
    ocr_vendor: Literal["auto", "tesseract", "ocrspace"] = Field(
        default="auto",
        description=(
            "OCR vendor policy: auto (local first, cloud fallback), "
            "tesseract (local engine), ocrspace (cloud engine)"
        ),
    )
    ocr_lang: str = Field(
        default="eng",
        description="OCR language set, e.g. 'eng' or 'dan+eng'",
    )
    ocr_secondary_lang: str = Field(
        default="dan",
        description="Language appended on locale-adaptive re-OCR",
    )
    ocrspace_api_key: str = Field(
        default="",
        description="OCR.space API key (use env var APP_OCRSPACE_API_KEY)",
    )
    ocrspace_url: str = Field(
        default="https://api.ocr.space/parse/image",
        description="OCR.space parse endpoint",
    )
    ocrspace_engine: int = Field(default=2, description="OCR.space engine number")
    ocrspace_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts per OCR.space call on 429/5xx/transport errors",
    )
    ocr_timeout_seconds: float = Field(
        default=180.0,
        description="Timeout for a single OCR call",
    )
    tesseract_cmd: str | None = Field(
        default=None,
        description="Override path to the tesseract binary",
    )

    # Normalization (LLM) configuration
    normalization_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="Schema-constrained normalization provider",
    )
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (use env var APP_OPENAI_API_KEY)",
    )
    llm_model: str = Field(default="gpt-4o-mini", description="Chat model for normalization")
    llm_max_retries: int = Field(default=4, ge=1, description="Maximum attempts per request")
    llm_min_delay_seconds: float = Field(default=1.2, description="Backoff base delay")
    llm_max_delay_seconds: float = Field(default=6.0, description="Backoff delay cap")
    llm_timeout_seconds: float = Field(default=120.0, description="Per-request timeout")
    ollama_base_url: str = Field(
        default="",
        description="Ollama server base URL; empty disables the ollama provider",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model used for normalization",
    )

    # Mail source (IMAP)
    imap_host: str = Field(default="imap.gmail.com", description="IMAP host")
    imap_port: int = Field(default=993, description="IMAP port")
    imap_tls: bool = Field(default=True, description="Use IMAP over TLS")
    imap_user: str = Field(default="", description="IMAP user (APP_IMAP_USER)")
    imap_password: str = Field(default="", description="IMAP password (APP_IMAP_PASSWORD)")
    mailbox: str = Field(default="INBOX", description="Mailbox to scan")
    imap_socket_timeout_seconds: float = Field(default=180.0, description="IMAP socket timeout")
    mail_fetch_limit: int = Field(default=50, description="Messages scanned per fetch")
    mail_subject: str = Field(default="", description="Subject substring filter")
    mail_from: str = Field(default="", description="Sender substring filter")

    # File storage
    upload_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for attachments when object storage is disabled",
    )
    storage_enabled: bool = Field(
        default=False,
        description="Store attachments in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(default="localhost:9000", description="host:port")
    storage_access_key: str = Field(default="", description="APP_STORAGE_ACCESS_KEY")
    storage_secret_key: str = Field(default="", description="APP_STORAGE_SECRET_KEY")
    storage_bucket: str = Field(default="bilags", description="Bucket for attachments")
    storage_secure: bool = Field(default=False, description="Use HTTPS for storage")

    # Extraction
    raw_text_max_chars: int = Field(
        default=500_000,
        description="Cap on the aggregated raw text kept with a document",
    )

    # Queue configuration (arq)
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    queue_max_jobs: int = Field(default=10, description="Concurrent jobs per worker")
    queue_job_timeout: int = Field(default=600, description="Job timeout in seconds")
    mail_cron_enabled: bool = Field(
        default=False,
        description="Fetch mail every five minutes from the worker",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
