"""Locale-tolerant parsing of monetary amounts and dates.

Invoices arrive in both "1.234,56" and "1,234.56" styles, often with currency
tokens and OCR noise mixed in. These helpers are best-effort signals: they
never raise, returning ``0.0`` / ``None`` for input they cannot read.
"""

import math
import re

CURRENCY_TOKENS = re.compile(r"\s?(kr\.?|dkk|eur|usd|gbp|sek|nok|chf)\b", re.IGNORECASE)
DATE_ANY = re.compile(r"\b(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})\b")

# Two-digit years at or above the pivot belong to the 1900s
YEAR_PIVOT = 70


def parse_amount(raw: object) -> float:
    """Parse a monetary string into a float.

    When both ``,`` and ``.`` occur, the one occurring last is the decimal
    mark. When only one kind occurs, a trailing group of exactly three digits
    with digits before it is read as thousands grouping; otherwise the
    separator is the decimal mark.

    Args:
        raw: Amount as found in text, e.g. "1.234,56 kr"

    Returns:
        Parsed value, or 0.0 when the input cannot be read
    """
    if raw is None:
        return 0.0

    s = CURRENCY_TOKENS.sub("", str(raw).strip())
    s = re.sub(r"[^\d.,-]", "", s)

    last_comma = s.rfind(",")
    last_dot = s.rfind(".")

    if last_comma != -1 and last_dot != -1:
        decimal_sep = "," if last_comma > last_dot else "."
        thousands_sep = "." if decimal_sep == "," else ","
        s = s.replace(thousands_sep, "").replace(decimal_sep, ".", 1)
    elif last_comma != -1 or last_dot != -1:
        sep = "," if last_comma != -1 else "."
        grouped = re.match(rf"^(.*){re.escape(sep)}(\d{{3}})$", s)
        if grouped and re.sub(r"\D", "", grouped.group(1)):
            s = s.replace(sep, "")
        else:
            s = s.replace(sep, ".", 1)

    s = re.sub(r"[^\d.-]", "", s)
    try:
        value = float(s)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_date(raw: object) -> str | None:
    """Normalize the first ``D.M.Y`` style token in ``raw`` to ISO format.

    Accepts ``.``, ``/`` and ``-`` separators and two or four digit years.

    Args:
        raw: Text containing a date, e.g. "Dato: 05.03.24"

    Returns:
        ``YYYY-MM-DD`` string, or None if no plausible date is present
    """
    if not raw:
        return None
    match = DATE_ANY.search(str(raw))
    if not match:
        return None

    day, month, year = match.groups()
    if len(year) == 2:
        year = f"19{year}" if int(year) >= YEAR_PIVOT else f"20{year}"
    elif len(year) != 4:
        return None
    if not (1 <= int(month) <= 12 and 1 <= int(day) <= 31):
        return None
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def round2(value: float) -> float:
    """Round to cents."""
    return round(float(value), 2)
