"""Proposal data models: an unposted journal entry plus stock receipts."""

from pydantic import BaseModel, Field


class JournalLine(BaseModel):
    account: str
    memo: str = ""
    debit: float = 0.0
    credit: float = 0.0


class JournalProposal(BaseModel):
    """Balanced double-entry draft; ``lines`` is empty when the total is zero."""

    je_number: str
    date: str
    reference: str
    memo: str
    currency: str
    lines: list[JournalLine] = Field(default_factory=list)

    @property
    def total_debit(self) -> float:
        return round(sum(line.debit for line in self.lines), 2)

    @property
    def total_credit(self) -> float:
        return round(sum(line.credit for line in self.lines), 2)

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


class StockMoveProposal(BaseModel):
    """Proposed stock receipt for one inventory-bearing line."""

    move_no: str
    item_no: str
    date: str
    item_sku: str
    qty: float = Field(..., description="Positive quantity")
    uom: str = "pcs"
    unit_cost: float
    from_wh_code: str = Field(..., description="Supplier name used as origin code")
    from_name: str
    to_wh_code: str
    memo: str
    status: str = "approved"


class Proposal(BaseModel):
    journal: JournalProposal
    stock_moves: list[StockMoveProposal] = Field(default_factory=list)
