"""Manual document entry.

A manually entered form is turned into the same ``Extraction`` structure the
mail path produces. Missing reference numbers and SKUs are generated, and
per-line net, tax and total are computed from the line's price basis.
"""

import re
from typing import Literal

from pydantic import BaseModel, Field

from bilags.extraction.heuristics import default_uom
from bilags.extraction.locale import round2
from bilags.extraction.schema import (
    DocumentNumbers,
    ExtractedLine,
    Extraction,
    Supplier,
    Totals,
)
from bilags.proposal.numbers import NumberGenerator

DEFAULT_TAX_RATE = 25.0

_INCLUSIVE_MODES = re.compile(r"^(inclusive|gross|incl|inc|brutto|taxed)$", re.IGNORECASE)
_EXCLUSIVE_MODES = re.compile(r"^(exclusive|net|excl|netto)$", re.IGNORECASE)


class ManualLine(BaseModel):
    """One line of a manually entered document."""

    sku: str = ""
    desc: str = ""
    qty: float = 0.0
    uom: str = ""
    unit_price: float = 0.0
    unit_price_gross: float | None = Field(
        None, description="Tax-inclusive unit price, preferred when the line includes tax"
    )
    tax_rate: float | None = Field(None, description="Overrides the document tax rate")
    price_mode: str = Field("", description="inclusive/gross/brutto or exclusive/net/netto")
    includes_tax: bool | None = None
    category: str | None = None


class ManualDocumentForm(BaseModel):
    """Payload for creating a document by hand."""

    subject: str = "Manual"
    supplier_name: str = ""
    supplier_email: str = ""
    supplier_phone: str = ""
    supplier_address: str = ""
    supplier_vat: str = ""
    invoice_no: str | None = None
    order_no: str | None = None
    date: str | None = None
    currency: str = "DKK"
    tax_mode: Literal["exclusive", "inclusive"] = "exclusive"
    tax_rate: float = DEFAULT_TAX_RATE
    lines: list[ManualLine] = Field(default_factory=list)


def _includes_tax(line: ManualLine, tax_mode: str) -> bool:
    if line.includes_tax is not None:
        return line.includes_tax
    mode = line.price_mode.strip()
    if _INCLUSIVE_MODES.match(mode):
        return True
    if _EXCLUSIVE_MODES.match(mode):
        return False
    return tax_mode == "inclusive"


def manual_line(
    line: ManualLine,
    index: int,
    form: ManualDocumentForm,
    numbers: NumberGenerator,
) -> ExtractedLine:
    """Compute one extracted line from a manual line.

    Args:
        line: Line as entered
        index: 0-based position, used for placeholder descriptions
        form: Document form (tax mode and default rate)
        numbers: Generator for missing SKUs

    Returns:
        ExtractedLine with net, tax and total filled in
    """
    qty = max(0.0, line.qty)
    category = line.category or ("inventory" if line.sku else "expense")
    rate_pct = line.tax_rate if line.tax_rate is not None else form.tax_rate
    rate = rate_pct / 100
    includes_tax = _includes_tax(line, form.tax_mode)

    if includes_tax and line.unit_price_gross is not None:
        unit_price = max(0.0, line.unit_price_gross)
    else:
        unit_price = max(0.0, line.unit_price)

    if includes_tax:
        gross = unit_price * qty
        line_net = round2(gross / (1 + rate) if rate > 0 else gross)
        tax_amount = round2(gross - line_net)
        line_total = round2(gross)
    else:
        net = unit_price * qty
        line_net = round2(net)
        tax_amount = round2(net * rate)
        line_total = round2(net + tax_amount)

    return ExtractedLine(
        sku=line.sku or numbers.sku(line.desc or f"LINE-{index + 1}"),
        desc=line.desc or f"Line {index + 1}",
        qty=qty,
        uom=line.uom or default_uom(category),
        unit_price=unit_price,
        tax_rate=rate_pct,
        tax_amount=tax_amount,
        line_net=line_net,
        line_total=line_total,
        category=category,
    )


def manual_extraction(form: ManualDocumentForm, numbers: NumberGenerator) -> Extraction:
    """Build the stored extraction for a manually entered document.

    Header totals are the sums of the computed line figures. A journal number
    is generated up front so the document carries one before routing.
    """
    lines = [manual_line(line, i, form, numbers) for i, line in enumerate(form.lines)]
    return Extraction(
        supplier=Supplier(
            name=form.supplier_name,
            vat=form.supplier_vat,
            email=form.supplier_email,
            phone=form.supplier_phone,
            address=form.supplier_address,
        ),
        numbers=DocumentNumbers(
            invoice_no=form.invoice_no or numbers.invoice_no(),
            order_no=form.order_no or numbers.order_no(),
            je_number=numbers.je_number(),
        ),
        date=form.date or None,
        currency=form.currency,
        totals=Totals(
            subtotal=round2(sum(line.line_net or 0.0 for line in lines)),
            tax=round2(sum(line.tax_amount or 0.0 for line in lines)),
            total_inc=round2(sum(line.line_total for line in lines)),
        ),
        lines=lines,
    )
