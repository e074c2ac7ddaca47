"""Extraction data models shared by every acquisition path.

Mail attachments, re-OCR runs, LLM normalization and manual entry all produce
the same ``ExtractedHeader`` / ``ExtractedLine`` structures, so the proposal
builder never needs to know where a document came from.
"""

from pydantic import BaseModel, Field, field_validator

DESC_MAX_CHARS = 140
SUPPLIER_NAME_MAX_CHARS = 80


class Supplier(BaseModel):
    """Supplier (seller) identity as printed on the document."""

    name: str | None = Field(None, description="Supplier/vendor name")
    vat: str | None = Field(None, description="Tax id (CVR/VAT/org.nr)")
    email: str | None = Field(None, description="Contact email")
    phone: str | None = Field(None, description="Contact phone")
    address: str | None = Field(None, description="Postal address")


class DocumentNumbers(BaseModel):
    """Reference numbers found on (or generated for) the document."""

    invoice_no: str | None = None
    order_no: str | None = None
    po_no: str | None = None
    je_number: str | None = None


class Totals(BaseModel):
    """Document totals; reconciled so ``subtotal + tax ≈ total_inc``."""

    subtotal: float | None = Field(None, description="Total excluding tax")
    tax: float | None = Field(None, description="Tax/VAT amount")
    total_inc: float | None = Field(None, description="Total including tax")


class ExtractedHeader(BaseModel):
    """Invoice header fields."""

    supplier: Supplier | None = None
    numbers: DocumentNumbers = Field(default_factory=DocumentNumbers)
    date: str | None = Field(None, description="Document date (YYYY-MM-DD)")
    currency: str = Field("DKK", description="Currency code")
    totals: Totals = Field(default_factory=Totals)

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            code = value.strip().upper().rstrip(".")
            return "DKK" if code == "KR" else code
        return value


class ExtractedLine(BaseModel):
    """A single invoice line item."""

    sku: str = ""
    desc: str = ""
    qty: float = 1.0
    uom: str = "ea"
    unit_price: float = 0.0
    tax_rate: float | None = Field(None, description="Tax rate in percent")
    tax_amount: float | None = None
    line_net: float | None = None
    line_total: float = 0.0
    category: str | None = Field(None, description="inventory | expense | service | ...")

    @field_validator("sku", "uom", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("desc", mode="before")
    @classmethod
    def _bound_desc(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value[:DESC_MAX_CHARS]
        return value


class Extraction(ExtractedHeader):
    """The stored ``extracted`` block: flattened header plus lines and raw text."""

    lines: list[ExtractedLine] = Field(default_factory=list)
    notes: str = ""
    raw_text: str = ""

    @property
    def header(self) -> ExtractedHeader:
        """Header view without lines and text."""
        return ExtractedHeader(
            supplier=self.supplier,
            numbers=self.numbers,
            date=self.date,
            currency=self.currency,
            totals=self.totals,
        )


class NormalizedResult(BaseModel):
    """Output of the schema-constrained normalization service."""

    header: ExtractedHeader
    lines: list[ExtractedLine] = Field(default_factory=list)
    notes: str = ""
