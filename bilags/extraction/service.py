"""Extraction service: heuristic draft plus optional LLM normalization."""

import logging

from bilags.extraction.base import NormalizationProvider
from bilags.extraction.heuristics import parse_header, parse_lines, receipt_total_line
from bilags.extraction.locale import round2
from bilags.extraction.schema import Extraction, ExtractedLine, Totals
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)

FALLBACK_NOTE = "LLM normalization unavailable; heuristic parse applied."


def heuristic_extraction(text: str, settings: Settings) -> Extraction:
    """Run the heuristic extractor over aggregated text.

    Args:
        text: Aggregated document text
        settings: Application settings (home currency, raw text cap)

    Returns:
        Extraction with header, lines and capped raw text
    """
    header = parse_header(text, home_currency=settings.home_currency)
    lines = parse_lines(text)
    return Extraction(
        **header.model_dump(),
        lines=lines,
        raw_text=(text or "")[: settings.raw_text_max_chars],
    )


def totals_from_lines(lines: list[ExtractedLine], header_tax: float | None) -> Totals:
    """Recompute document totals from line items.

    Subtotal is the sum of net amounts (line total minus tax when no net is
    given), total is the sum of line totals and tax is the header tax when
    known, else the difference.
    """
    subtotal = sum(
        line.line_net
        if line.line_net is not None
        else line.line_total - (line.tax_amount or 0.0)
        for line in lines
    )
    total = sum(line.line_total for line in lines)
    tax = header_tax if header_tax is not None else total - subtotal
    return Totals(subtotal=round2(subtotal), tax=round2(tax), total_inc=round2(total))


def normalize_extraction(
    provider: NormalizationProvider,
    text: str,
    draft: Extraction,
    settings: Settings,
) -> Extraction:
    """Normalize a heuristic draft, degrading to the draft when the provider answers None.

    Args:
        provider: Normalization provider (may be unconfigured)
        text: Aggregated document text
        draft: Heuristic extraction
        settings: Application settings

    Returns:
        Extraction with totals recomputed from the normalized lines, or the
        draft unchanged apart from the note and a synthesized receipt line
    """
    result = provider.normalize(text, draft.header, draft.lines)

    if result is None:
        lines = list(draft.lines)
        if not lines:
            receipt = receipt_total_line(draft.totals)
            if receipt is not None:
                lines = [receipt]
        logger.info(f"Normalization via {provider.provider_name} skipped; using heuristic draft")
        return Extraction(
            **draft.header.model_dump(),
            lines=lines,
            notes=FALLBACK_NOTE,
            raw_text=(text or "")[: settings.raw_text_max_chars],
        )

    # Lines are the source of truth for totals; an empty document keeps the header figures
    if result.lines:
        totals = totals_from_lines(result.lines, result.header.totals.tax)
    else:
        totals = result.header.totals
    return Extraction(
        **result.header.model_dump(exclude={"totals"}),
        totals=totals,
        lines=result.lines,
        notes=result.notes,
        raw_text=(text or "")[: settings.raw_text_max_chars],
    )


def merge_extractions(parts: list[Extraction], settings: Settings) -> Extraction:
    """Merge per-file heuristic extractions into one document extraction.

    The first supplier and date win, later reference numbers, currency and
    totals override earlier ones, lines are concatenated and raw texts joined.
    A missing inclusive total is stored as 0.

    Args:
        parts: One extraction per stored file, in file order
        settings: Application settings

    Returns:
        Merged Extraction
    """
    merged = Extraction(currency=settings.home_currency)
    numbers: dict[str, str] = {}
    totals: dict[str, float] = {}
    texts: list[str] = []

    for part in parts:
        if part.supplier is not None and merged.supplier is None:
            merged.supplier = part.supplier
        if part.date and not merged.date:
            merged.date = part.date
        numbers.update(part.numbers.model_dump(exclude_none=True))
        totals.update(part.totals.model_dump(exclude_none=True))
        if part.currency:
            merged.currency = part.currency
        merged.lines.extend(part.lines)
        if part.raw_text:
            texts.append(part.raw_text)

    totals.setdefault("total_inc", 0.0)
    merged.numbers = merged.numbers.model_copy(update=numbers)
    merged.totals = Totals(**totals)
    merged.raw_text = "\n".join(texts)[: settings.raw_text_max_chars]
    return merged
