"""Derives a balanced journal proposal and stock receipts from an extraction.

Both journal sides are built from one total, so a non-empty proposal is
balanced by construction. The builder is pure apart from the injected number
generator and clock.
"""

import logging
import re
from collections.abc import Callable
from datetime import date

from bilags.extraction.locale import round2
from bilags.extraction.schema import ExtractedHeader, ExtractedLine
from bilags.proposal.numbers import ClockRandomNumberGenerator, NumberGenerator
from bilags.proposal.schema import JournalLine, JournalProposal, Proposal, StockMoveProposal
from bilags.shared.config import Settings

logger = logging.getLogger(__name__)

INVENTORY_KEYWORDS = re.compile(
    r"module|converter|cable|monitor|ssd|ram|keyboard|microphone|sensor|pcb|psu",
    re.IGNORECASE,
)
MIN_SKU_CHARS = 3
FROM_CODE_MAX_CHARS = 40


def document_total(header: ExtractedHeader, lines: list[ExtractedLine]) -> float:
    """Sum of line totals when positive, else the header's inclusive total."""
    line_sum = sum(line.line_total or 0.0 for line in lines)
    if line_sum > 0:
        return round2(line_sum)
    return round2(header.totals.total_inc or 0.0)


def looks_inventory(lines: list[ExtractedLine], subject: str | None) -> bool:
    """Whether the document represents stock receipts rather than pure expense."""
    if any(len(line.sku) >= MIN_SKU_CHARS or line.category == "inventory" for line in lines):
        return True
    return bool(INVENTORY_KEYWORDS.search(subject or ""))


class ProposalBuilder:
    """Builds ``Proposal`` objects.

    Args:
        settings: Accounts, home currency and main warehouse
        numbers: Generator for journal, move and item numbers
        today: Clock used for proposal dates
    """

    def __init__(
        self,
        settings: Settings,
        numbers: NumberGenerator | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings
        self.numbers = numbers or ClockRandomNumberGenerator(today)
        self._today = today

    def _journal_lines(self, total: float, inventory: bool) -> list[JournalLine]:
        if total <= 0:
            return []
        payable = JournalLine(
            account=self.settings.payable_account,
            memo="Payment/Payable",
            credit=total,
        )
        if inventory:
            debit = JournalLine(
                account=self.settings.inventory_account,
                memo="Inventory receipt",
                debit=total,
            )
        else:
            debit = JournalLine(account=self.settings.expense_account, memo="Expense", debit=total)
        return [payable, debit]

    def _stock_move(
        self, line: ExtractedLine, header: ExtractedHeader, day: str
    ) -> StockMoveProposal:
        qty = abs(line.qty or 0.0) or 1.0
        unit_cost = line.line_total / qty if line.line_total else line.unit_price
        name = header.supplier.name if header.supplier else None
        supplier = (name or "Unknown Supplier").strip()
        return StockMoveProposal(
            move_no=self.numbers.move_no(),
            item_no=self.numbers.item_no(line.sku, line.desc),
            date=day,
            item_sku=line.sku,
            qty=qty,
            uom=line.uom or "pcs",
            unit_cost=unit_cost,
            from_wh_code=supplier[:FROM_CODE_MAX_CHARS],
            from_name=supplier,
            to_wh_code=self.settings.main_warehouse,
            memo=f"Auto receipt from {header.numbers.invoice_no or 'invoice'}",
        )

    def build(
        self,
        header: ExtractedHeader,
        lines: list[ExtractedLine],
        subject: str | None = None,
    ) -> Proposal:
        """Build the journal and stock move proposal for a document.

        Args:
            header: Extracted (or normalized) header
            lines: Extracted line items
            subject: Mail subject, used as reference and classification hint

        Returns:
            Proposal; the journal always carries a number, even with no lines
        """
        total = document_total(header, lines)
        inventory = looks_inventory(lines, subject)
        day = self._today().isoformat()
        numbers = header.numbers
        supplier_name = header.supplier.name if header.supplier else None

        journal = JournalProposal(
            je_number=numbers.je_number or self.numbers.je_number(),
            date=day,
            reference=numbers.invoice_no or numbers.order_no or subject or "Supplier Invoice",
            memo=f"Supplier {supplier_name or 'N/A'} {numbers.invoice_no or ''}".strip(),
            currency=header.currency or self.settings.home_currency,
            lines=self._journal_lines(total, inventory),
        )

        stock_moves: list[StockMoveProposal] = []
        if inventory:
            stock_moves = [
                self._stock_move(line, header, day)
                for line in lines
                if (line.sku and line.qty and line.line_total) or line.unit_price
            ]

        logger.debug(
            f"Proposal {journal.je_number}: total={total} inventory={inventory} "
            f"moves={len(stock_moves)}"
        )
        return Proposal(journal=journal, stock_moves=stock_moves)
