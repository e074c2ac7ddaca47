"""Generators for journal, stock move, item and document numbers.

Production numbers combine the clock date with a random four-digit suffix;
they are readable but not guaranteed unique at draft time. Tests inject a
``SequenceNumberGenerator`` for deterministic output.
"""

import random
import re
from collections import defaultdict
from collections.abc import Callable
from datetime import date
from typing import Protocol


def _sku_stem(desc: str) -> str:
    words = re.sub(r"[^A-Z0-9\s]", "", (desc or "").strip().upper()).split()
    return "-".join(w[:3] for w in words[:3]) or "SKU"


def _item_stem(sku: str, desc: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", (sku or desc or "ITEM").upper())[:6] or "ITEM"


class NumberGenerator(Protocol):
    """Source of generated reference numbers."""

    def je_number(self) -> str: ...

    def move_no(self) -> str: ...

    def item_no(self, sku: str, desc: str) -> str: ...

    def invoice_no(self) -> str: ...

    def order_no(self) -> str: ...

    def sku(self, desc: str) -> str: ...


class ClockRandomNumberGenerator:
    """Numbers of the form ``PREFIX-YYYYMMDD-NNNN``."""

    def __init__(
        self,
        today: Callable[[], date] = date.today,
        rng: random.Random | None = None,
    ) -> None:
        self._today = today
        self._rng = rng or random.Random()

    def _rand4(self) -> str:
        return f"{self._rng.randrange(10000):04d}"

    def _dated(self, prefix: str) -> str:
        return f"{prefix}-{self._today():%Y%m%d}-{self._rand4()}"

    def je_number(self) -> str:
        return self._dated("JE")

    def move_no(self) -> str:
        return self._dated("MOV")

    def invoice_no(self) -> str:
        return self._dated("INV")

    def order_no(self) -> str:
        return self._dated("ORD")

    def item_no(self, sku: str, desc: str) -> str:
        return f"ITEM-{_item_stem(sku, desc)}-{self._rand4()}"

    def sku(self, desc: str) -> str:
        return f"SKU-{_sku_stem(desc)}-{self._rand4()}"


class SequenceNumberGenerator:
    """Deterministic generator with an independent counter per prefix."""

    def __init__(self, day: str = "20240101") -> None:
        self._day = day
        self._counters: dict[str, int] = defaultdict(int)

    def _next(self, key: str) -> str:
        self._counters[key] += 1
        return f"{self._counters[key]:04d}"

    def je_number(self) -> str:
        return f"JE-{self._day}-{self._next('JE')}"

    def move_no(self) -> str:
        return f"MOV-{self._day}-{self._next('MOV')}"

    def invoice_no(self) -> str:
        return f"INV-{self._day}-{self._next('INV')}"

    def order_no(self) -> str:
        return f"ORD-{self._day}-{self._next('ORD')}"

    def item_no(self, sku: str, desc: str) -> str:
        return f"ITEM-{_item_stem(sku, desc)}-{self._next('ITEM')}"

    def sku(self, desc: str) -> str:
        return f"SKU-{_sku_stem(desc)}-{self._next('SKU')}"
