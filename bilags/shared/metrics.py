"""Prometheus metrics for the intake pipeline.

Exposes key metrics for monitoring:
- Documents ingested per outcome
- OCR request counts and durations per engine
- Normalization request outcomes and retries

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram

# Intake metrics
documents_ingested_total = Counter(
    "bilags_documents_ingested_total",
    "Mail messages handled by the intake controller",
    ["outcome"],  # parsed, duplicate, no_match, no_files, no_stream, failed
)

# OCR metrics
ocr_requests_total = Counter(
    "bilags_ocr_requests_total",
    "Total OCR engine calls",
    ["engine", "status"],  # engine: tesseract, ocrspace; status: success, failed
)

ocr_processing_duration_seconds = Histogram(
    "bilags_ocr_processing_duration_seconds",
    "OCR engine call duration in seconds",
    ["engine"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 180.0),
)

# Normalization metrics
normalization_requests_total = Counter(
    "bilags_normalization_requests_total",
    "Schema-constrained normalization calls",
    ["provider", "outcome"],  # outcome: success, skipped, failed
)

normalization_retries_total = Counter(
    "bilags_normalization_retries_total",
    "Retried normalization attempts",
    ["provider"],
)

