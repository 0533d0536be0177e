"""
Order and line flag vocabulary.

WHY: Every role screen, guard and total in the workflow keys off two small
state sets. Keeping them here, with their ordering rules, means a guard reads
``flag.at_least(FulfillmentFlag.OUT_OF_STOCK)`` instead of comparing magic
integers.

ORDER APPROVAL FLOW:
    NEW -> SENT_TO_STOREKEEPER -> VERIFIED_BY_STOREKEEPER -> COMPLETED
                              \\-> SENT_TO_CHECKER -> CHECKER_IS_CHECKING -> COMPLETED
    REJECTED / CANCELLED reachable from any non-terminal state.

LINE FULFILLMENT SEVERITY:
    NEW_ITEM(0) < NOT_CHECKED(1) < IN_STOCK(2) < OUT_OF_STOCK(3) < REPORTED(4) < NOT_AVAILABLE(5)
    CANCELLED and REPLACED are side states with no severity.
"""

from __future__ import annotations

import enum


class ApprovalFlag(str, enum.Enum):
    NEW = "NEW"
    SENT_TO_STOREKEEPER = "SENT_TO_STOREKEEPER"
    VERIFIED_BY_STOREKEEPER = "VERIFIED_BY_STOREKEEPER"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    SENT_TO_CHECKER = "SENT_TO_CHECKER"
    CHECKER_IS_CHECKING = "CHECKER_IS_CHECKING"

    @property
    def code(self) -> int:
        """Numeric code used by the mobile clients."""
        return _APPROVAL_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> "ApprovalFlag":
        for flag, value in _APPROVAL_CODES.items():
            if value == code:
                return flag
        raise ValueError(f"Unknown approval flag code: {code}")

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_APPROVAL_FLAGS


_APPROVAL_CODES = {
    ApprovalFlag.NEW: 0,
    ApprovalFlag.SENT_TO_STOREKEEPER: 1,
    ApprovalFlag.VERIFIED_BY_STOREKEEPER: 2,
    ApprovalFlag.COMPLETED: 3,
    ApprovalFlag.REJECTED: 4,
    ApprovalFlag.CANCELLED: 5,
    ApprovalFlag.SENT_TO_CHECKER: 6,
    ApprovalFlag.CHECKER_IS_CHECKING: 7,
}

_TERMINAL_APPROVAL_FLAGS = frozenset(
    {ApprovalFlag.COMPLETED, ApprovalFlag.REJECTED, ApprovalFlag.CANCELLED}
)


class FulfillmentFlag(str, enum.Enum):
    NEW_ITEM = "NEW_ITEM"
    NOT_CHECKED = "NOT_CHECKED"
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    REPORTED = "REPORTED"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    CANCELLED = "CANCELLED"
    REPLACED = "REPLACED"

    @property
    def code(self) -> int:
        return _FULFILLMENT_CODES[self]

    @property
    def is_side_state(self) -> bool:
        return self in (FulfillmentFlag.CANCELLED, FulfillmentFlag.REPLACED)

    @property
    def severity(self) -> int:
        """
        Position on the severity scale.

        Raises:
            ValueError: for CANCELLED / REPLACED, which sit outside the scale
        """
        if self.is_side_state:
            raise ValueError(f"{self.value} has no severity")
        return _FULFILLMENT_CODES[self]

    def at_least(self, other: "FulfillmentFlag") -> bool:
        """True if this flag is at least as severe as ``other``."""
        return self.severity >= other.severity

    def below(self, other: "FulfillmentFlag") -> bool:
        return self.severity < other.severity

    @property
    def is_shortage(self) -> bool:
        """Stock short and still open to an availability decision."""
        return self in (FulfillmentFlag.OUT_OF_STOCK, FulfillmentFlag.REPORTED)

    @property
    def has_stock_decision(self) -> bool:
        return not self.is_side_state and self.at_least(FulfillmentFlag.IN_STOCK)


_FULFILLMENT_CODES = {
    FulfillmentFlag.NEW_ITEM: 0,
    FulfillmentFlag.NOT_CHECKED: 1,
    FulfillmentFlag.IN_STOCK: 2,
    FulfillmentFlag.OUT_OF_STOCK: 3,
    FulfillmentFlag.REPORTED: 4,
    FulfillmentFlag.NOT_AVAILABLE: 5,
    FulfillmentFlag.CANCELLED: 6,
    FulfillmentFlag.REPLACED: 7,
}


class Role(str, enum.Enum):
    SALESMAN = "SALESMAN"
    STOREKEEPER = "STOREKEEPER"
    CHECKER = "CHECKER"
    BILLER = "BILLER"
    ADMIN = "ADMIN"
    SUPPLIER = "SUPPLIER"


class SuggestionStatus(str, enum.Enum):
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    DISCARDED = "DISCARDED"


class ShortageStatus(str, enum.Enum):
    OPEN = "OPEN"
    AWAITING_SUPPLIER = "AWAITING_SUPPLIER"
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    CLOSED = "CLOSED"
