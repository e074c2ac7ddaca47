"""Prompt, JSON schema and response parsing shared by normalization providers."""

import json
import random
from typing import Any

from pydantic import ValidationError

from bilags.extraction.schema import ExtractedHeader, ExtractedLine, NormalizedResult

MAX_TEXT_CHARS = 250_000
MAX_DRAFT_CHARS = 50_000
MAX_LINE_ITEMS = 100
SCHEMA_NAME = "invoice_extraction"

SYSTEM_PROMPT = " ".join(
    [
        "You extract structured invoice data from noisy OCR text.",
        "Return STRICT JSON that matches the given JSON Schema.",
        "Do not invent values; if unknown, use null. Numbers must use '.' decimal.",
        "Ensure numeric integrity: line_total ≈ qty * unit_price; totals consistent.",
    ]
)


def _nullable(kind: str) -> dict[str, Any]:
    return {"type": [kind, "null"]}


def _object(properties: dict[str, Any]) -> dict[str, Any]:
    # Strict structured outputs need every property listed as required;
    # optional values are expressed as nullable types instead.
    return {
        "type": "object",
        "additionalProperties": False,
        "required": list(properties),
        "properties": properties,
    }


INVOICE_SCHEMA: dict[str, Any] = _object(
    {
        "header": _object(
            {
                "supplier": {
                    "anyOf": [
                        {"type": "null"},
                        _object(
                            {
                                "name": _nullable("string"),
                                "vat": _nullable("string"),
                                "email": _nullable("string"),
                                "phone": _nullable("string"),
                                "address": _nullable("string"),
                            }
                        ),
                    ]
                },
                "numbers": _object(
                    {
                        "invoice_no": _nullable("string"),
                        "order_no": _nullable("string"),
                        "po_no": _nullable("string"),
                        "je_number": _nullable("string"),
                    }
                ),
                "date": _nullable("string"),
                "currency": {"type": "string"},
                "totals": _object(
                    {
                        "subtotal": _nullable("number"),
                        "tax": _nullable("number"),
                        "total_inc": _nullable("number"),
                    }
                ),
            }
        ),
        "lines": {
            "type": "array",
            "maxItems": MAX_LINE_ITEMS,
            "items": _object(
                {
                    "sku": {"type": "string"},
                    "desc": {"type": "string"},
                    "qty": {"type": "number"},
                    "uom": {"type": "string"},
                    "unit_price": {"type": "number"},
                    "tax_rate": _nullable("number"),
                    "tax_amount": _nullable("number"),
                    "line_net": _nullable("number"),
                    "line_total": {"type": "number"},
                    "category": _nullable("string"),
                }
            ),
        },
        "notes": {"type": "string"},
    }
)


def build_user_prompt(
    text: str,
    draft_header: ExtractedHeader,
    draft_lines: list[ExtractedLine],
) -> str:
    """Build the user message: OCR text, the heuristic draft and the task."""
    draft = json.dumps(
        {
            "header": draft_header.model_dump(mode="json"),
            "lines": [line.model_dump(mode="json") for line in draft_lines],
        },
        ensure_ascii=False,
    )
    return f"""### OCR_TEXT
{(text or "")[:MAX_TEXT_CHARS]}

### DRAFT_JSON
{draft[:MAX_DRAFT_CHARS]}

### TASK
1) Normalize and complete header + line items.
2) If invoice number is missing but visible, fill it.
3) Reconcile subtotal, tax, total_inc consistently.
4) Provide brief "notes" about corrections.
Return ONLY JSON."""


def parse_normalized(raw: str | None) -> NormalizedResult | None:
    """Parse a model answer into a NormalizedResult.

    Returns:
        The parsed result, or None for empty, non-JSON or schema-invalid content
    """
    if not raw:
        return None
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            return None
        return NormalizedResult.model_validate(
            {
                "header": payload.get("header") or {},
                "lines": payload.get("lines") or [],
                "notes": payload.get("notes") or "",
            }
        )
    except (json.JSONDecodeError, ValidationError):
        return None


def backoff_delay(attempt: int, min_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based) with up to 40% jitter."""
    base = min(min_delay * (2**attempt), max_delay)
    return base + random.uniform(0, base * 0.4)
