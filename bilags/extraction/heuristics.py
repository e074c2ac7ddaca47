"""Rule-based extraction of invoice header fields and line items.

Works on raw text from native PDF layers or OCR. Danish and English labels are
recognised side by side (faktura/invoice, moms/VAT, beløb i alt/amount due).

Every function here is total: any string input yields a result, never an
exception. Missing information is represented as None or an empty list and the
proposal builder copes with it downstream.
"""

import logging
import re

from bilags.extraction.locale import DATE_ANY, parse_amount, parse_date, round2
from bilags.extraction.schema import (
    SUPPLIER_NAME_MAX_CHARS,
    DocumentNumbers,
    ExtractedHeader,
    ExtractedLine,
    Supplier,
    Totals,
)

logger = logging.getLogger(__name__)

MAX_LINES = 50
SUPPLIER_SCAN_LINES = 15
CONTACT_SCAN_LINES = 30
MIN_PHONE_DIGITS = 8

NUM = r"(?:\d{1,3}(?:[.,\s]\d{3})*(?:[.,]\d{2})|\d+(?:[.,]\d{2})?)"
QTY = r"\d+(?:[.,]\d{1,3})?"
CUR = r"\b(DKK|KR\.?|EUR|USD|GBP|SEK|NOK|CHF)(?![A-Za-z])"
# Number-ish reference token: must carry at least one digit
REF = r"([A-Z0-9\-/]*\d[A-Z0-9\-/]*)"

_CURRENCY = re.compile(CUR, re.IGNORECASE)

_VAT_AMOUNT = re.compile(rf"\b(?:moms|vat)\b[ \t:]*({NUM})", re.IGNORECASE)
_TOTAL_EXCL = re.compile(
    rf"\btotal\s*(?:ex|ekskl)\w*\.?(?:\s*(?:moms|vat|tax))?[ \t:]*({NUM})", re.IGNORECASE
)
_TOTAL_INCL = re.compile(
    rf"\btotal\s*(?:(?:inc|inkl)\w*\.?(?:\s*(?:moms|vat|tax))?|i\s*alt)[ \t:]*({NUM})",
    re.IGNORECASE,
)
_AMOUNT_DUE = re.compile(rf"\b(?:bel[øo]b\s*i\s*alt|amount\s*due)[ \t:]*({NUM})", re.IGNORECASE)
_TOTAL_GENERIC = re.compile(rf"\b(?:total|sum)\s*:?\s*({NUM})\s*(?:{CUR})?", re.IGNORECASE)
_TOTALS_MARKER = re.compile(r"\b(total|i\s*alt|amount\s*due|total\s*inkl)", re.IGNORECASE)
# A VAT keyword directly after these words is part of a total label, not a tax amount
_TAX_LABEL_PREFIX = re.compile(r"(?:incl|inkl|inc|excl|ekskl|ex)\w*\.?\s*$", re.IGNORECASE)

_BANNER = re.compile(r"invoice|faktura|receipt|kvittering", re.IGNORECASE)
_TAX_ID_LINE = re.compile(r"^cvr[:\s]", re.IGNORECASE)
_EIGHT_DIGITS = re.compile(r"\b\d{8}\b")
_TAX_ID = re.compile(r"\b(?:cvr|vat|org\.?nr)\b[ \t:]*([A-Z0-9.\- ]{6,})", re.IGNORECASE)
_EMAIL = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_PHONE = re.compile(r"\+?\d[\d \-]{6,}\d")

_INVOICE_NO = (
    re.compile(
        rf"(?:invoice|faktura)[ \t]*(?:no\.?|#|nr\.?|nummer|number)[ \t]*[:\-]?[ \t]*{REF}",
        re.IGNORECASE,
    ),
    re.compile(rf"\bfaktura(?:nr|nummer)?\b[ \t]*[:\-]?[ \t]*{REF}", re.IGNORECASE),
)
_ORDER_NO = re.compile(
    rf"(?:order|ordre(?:nr|nummer)?)[ \t]*(?:no\.?|#|nr\.?|nummer|number)?[ \t]*[:\-]?[ \t]*{REF}",
    re.IGNORECASE,
)
_PO_NO = re.compile(
    rf"\b(?:p\.?o\.?|indk[øo]bsordre)[ \t]*(?:no\.?|#|nr\.?|number)?[ \t]*[:\-]?[ \t]*{REF}",
    re.IGNORECASE,
)
_LABELLED_DATE = re.compile(
    r"\b(?:dato|invoice\s*date|faktura\s*dato|date)\b[ \t:]*([0-9./-]{6,10})", re.IGNORECASE
)
_NOT_PHONE_ROWS = (*_INVOICE_NO, _ORDER_NO, _PO_NO, _TAX_ID, _LABELLED_DATE)

# Line shapes, evaluated top-down; the first match wins
_SKU_LINE = re.compile(
    rf"^((?=[A-Z._-]*\d)[A-Z0-9._-]{{3,}})\s+(.+?)\s+({QTY})\s+({NUM})\s+({NUM})$",
    re.IGNORECASE,
)
_QTY_TIMES_PRICE = re.compile(
    rf"^(.*?)({QTY})\s*[x×]\s*({NUM})(?:\s*=\s*({NUM}))?$", re.IGNORECASE
)
_PRICE_TIMES_QTY = re.compile(rf"^(.*?)({NUM})\s*[x×]\s*({QTY})\s+({NUM})$", re.IGNORECASE)
_TEXT_AMOUNT = re.compile(rf"^(.{{6,}}?)\s+({NUM})$")

_SHIPPING = re.compile(r"shipping|freight|porto|delivery|fragt|forsendelse", re.IGNORECASE)
# Rows that carry an amount but describe totals, tax or contact details
_NON_ITEM_ROW = re.compile(
    r"\b(?:sub\s*total|total|sum|i\s*alt|amount\s*due|bel[øo]b|moms|vat|tax|tlf|tel|phone|"
    r"fax|cvr|iban|konto|account|bank|order|ordre\w*|faktura\w*|invoice)\b",
    re.IGNORECASE,
)


def _clean(text: str | None) -> str:
    return (text or "").replace("\u00a0", " ")


def default_uom(category: str | None) -> str:
    """Unit of measure implied by a line category."""
    category = category or ""
    if re.search(r"service", category, re.IGNORECASE):
        return "hrs"
    if re.search(r"inventory", category, re.IGNORECASE):
        return "pcs"
    return "ea"


def _parse_qty(raw: str) -> float:
    try:
        qty = float(raw.replace(",", "."))
    except ValueError:
        return 1.0
    return qty or 1.0


def _find_tax(text: str) -> float | None:
    for match in _VAT_AMOUNT.finditer(text):
        prefix = text[max(0, match.start() - 16) : match.start()]
        if _TAX_LABEL_PREFIX.search(prefix):
            continue
        return parse_amount(match.group(1))
    return None


def reconcile_totals(text: str | None) -> Totals:
    """Find labelled totals and derive the missing one of subtotal/tax/total.

    Looks for a VAT/moms amount, an explicit "total excl." amount and an
    explicit "total incl."/"total i alt" amount (alternatively "beløb i alt" or
    "amount due"). When two of the three are known the third is derived.

    Args:
        text: Raw document text

    Returns:
        Totals with None for amounts that could not be found or derived
    """
    t = _clean(text)

    tax = _find_tax(t)

    incl = _TOTAL_INCL.search(t) or _AMOUNT_DUE.search(t)
    total_inc = parse_amount(incl.group(1)) if incl else None

    excl = _TOTAL_EXCL.search(t)
    if excl:
        subtotal: float | None = parse_amount(excl.group(1))
    elif total_inc is not None and tax is not None:
        subtotal = round2(total_inc - tax)
    else:
        subtotal = None

    if total_inc is None and subtotal is not None and tax is not None:
        total_inc = round2(subtotal + tax)

    return Totals(subtotal=subtotal, tax=tax, total_inc=total_inc)


def _resolve_totals(text: str) -> Totals:
    totals = reconcile_totals(text)
    if totals.total_inc is None:
        hit = _TOTAL_GENERIC.search(text)
        if hit:
            totals.total_inc = parse_amount(hit.group(1))
    return totals


def _guess_currency(text: str, home_currency: str) -> str:
    hit = _CURRENCY.search(text)
    if not hit or hit.group(1).upper().startswith("KR"):
        return home_currency
    return hit.group(1).upper()


def _guess_supplier_name(lines: list[str]) -> str | None:
    for line in lines[:SUPPLIER_SCAN_LINES]:
        if _BANNER.search(line):
            continue
        if _TAX_ID_LINE.search(line) or _EIGHT_DIGITS.search(line):
            continue
        if re.search(r"[A-Za-z]", line) and len(line) >= 3:
            return line[:SUPPLIER_NAME_MAX_CHARS]
    return None


def _find_phone(chunk: str) -> str | None:
    for row in chunk.splitlines():
        # Reference numbers and tax ids look like phone numbers
        if any(p.search(row) for p in _NOT_PHONE_ROWS):
            continue
        for match in _PHONE.finditer(row):
            candidate = match.group(0)
            if DATE_ANY.search(candidate) or len(re.sub(r"\D", "", candidate)) < MIN_PHONE_DIGITS:
                continue
            return candidate
    return None


def _first_group(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1) if match else None


def parse_header(text: str | None, home_currency: str = "DKK") -> ExtractedHeader:
    """Extract supplier, reference numbers, date, currency and totals.

    Args:
        text: Raw document text
        home_currency: Currency assumed for "kr" or when no currency is named

    Returns:
        ExtractedHeader; fields that could not be found are None
    """
    t = _clean(text)
    lines = [s.strip() for s in t.splitlines() if s.strip()]

    top_chunk = "\n".join(lines[:CONTACT_SCAN_LINES])
    name = _guess_supplier_name(lines)
    tax_id = _TAX_ID.search(top_chunk)
    email = _EMAIL.search(top_chunk)
    phone = _find_phone(top_chunk)

    supplier = None
    if name or tax_id or email or phone:
        supplier = Supplier(
            name=name,
            vat=tax_id.group(1).strip() if tax_id else None,
            email=email.group(0) if email else None,
            phone=phone,
        )

    invoice_no = None
    for pattern in _INVOICE_NO:
        invoice_no = _first_group(pattern, t)
        if invoice_no:
            break

    date_raw = _first_group(_LABELLED_DATE, t)
    date = parse_date(date_raw) if date_raw else None
    if date is None:
        date = parse_date(t)

    return ExtractedHeader(
        supplier=supplier,
        numbers=DocumentNumbers(
            invoice_no=invoice_no,
            order_no=_first_group(_ORDER_NO, t),
            po_no=_first_group(_PO_NO, t),
        ),
        date=date,
        currency=_guess_currency(t, home_currency),
        totals=_resolve_totals(t),
    )


def _match_line(row: str) -> ExtractedLine | None:
    m = _SKU_LINE.match(row)
    if m:
        return ExtractedLine(
            sku=m.group(1),
            desc=m.group(2),
            qty=_parse_qty(m.group(3)),
            unit_price=parse_amount(m.group(4)),
            line_total=parse_amount(m.group(5)),
            category="inventory",
            uom=default_uom("inventory"),
        )

    m = _QTY_TIMES_PRICE.match(row)
    if m:
        qty = _parse_qty(m.group(2))
        unit_price = parse_amount(m.group(3))
        total = parse_amount(m.group(4)) if m.group(4) else round2(qty * unit_price)
        return ExtractedLine(
            desc=m.group(1).strip() or "Item",
            qty=qty,
            unit_price=unit_price,
            line_total=total,
            category="expense",
            uom=default_uom("expense"),
        )

    m = _PRICE_TIMES_QTY.match(row)
    if m:
        unit_price = parse_amount(m.group(2))
        qty = _parse_qty(m.group(3))
        total = parse_amount(m.group(4))
        return ExtractedLine(
            desc=m.group(1).strip() or "Item",
            qty=qty,
            unit_price=unit_price,
            line_total=total or round2(qty * unit_price),
            category="expense",
            uom=default_uom("expense"),
        )

    m = _TEXT_AMOUNT.match(row)
    if m and not _NON_ITEM_ROW.search(m.group(1)) and not DATE_ANY.search(row):
        amount = parse_amount(m.group(2))
        category = "service" if _SHIPPING.search(m.group(1)) else "expense"
        return ExtractedLine(
            desc=m.group(1),
            qty=1.0,
            unit_price=amount,
            line_total=amount,
            category=category,
            uom=default_uom(category),
        )

    return None


def parse_lines(text: str | None) -> list[ExtractedLine]:
    """Extract line items from raw text.

    Each text row is matched against the line shapes in priority order:
    ``SKU DESC QTY UNIT TOTAL``, ``DESC QTY x UNIT [= TOTAL]``,
    ``DESC UNIT x QTY TOTAL`` and finally ``TEXT AMOUNT``. At most 50 lines
    are kept. If nothing matched but the text has a totals marker, a single
    "Receipt total" line carries the inclusive total.

    Args:
        text: Raw document text

    Returns:
        List of extracted lines (possibly empty)
    """
    t = _clean(text)
    found: list[ExtractedLine] = []
    for raw in t.splitlines():
        row = raw.strip()
        if not row:
            continue
        line = _match_line(row)
        if line is not None:
            found.append(line)

    lines = found[:MAX_LINES]
    if not lines and _TOTALS_MARKER.search(t):
        receipt = receipt_total_line(_resolve_totals(t))
        if receipt is not None:
            lines.append(receipt)

    logger.debug(f"Parsed {len(lines)} line(s) from {len(t)} chars of text")
    return lines


def receipt_total_line(totals: Totals) -> ExtractedLine | None:
    """Single synthetic line standing in for a receipt without item rows."""
    if totals.total_inc is None:
        return None
    return ExtractedLine(
        sku="",
        desc="Receipt total",
        qty=1.0,
        uom="ea",
        unit_price=totals.total_inc,
        line_total=totals.total_inc,
        category="expense",
    )

