"""
Flag vocabulary and line classification rules.

These are pure: no database, no app context.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from orderflow.flags import ApprovalFlag, FulfillmentFlag
from orderflow.identity import UNASSIGNED, Assigned, assignment_from_column, is_held_by
from orderflow.services import line_rules


def make_line(flag, ordered="10", available="0", accepted=False, **extra):
    fields = dict(
        id=extra.pop("id", 1),
        order_id=1,
        product_ref="SKU",
        ordered_qty=Decimal(ordered),
        available_qty=Decimal(available),
        rate=Decimal(extra.pop("rate", "5")),
        fulfillment_flag=flag,
        availability_accepted=accepted,
        is_checked=False,
        estimated_qty=None,
        estimated_total=None,
        replaces_line_id=None,
        replaced_by_line_id=None,
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


class TestApprovalFlag:
    def test_codes_round_trip(self):
        for flag in ApprovalFlag:
            assert ApprovalFlag.from_code(flag.code) is flag

    def test_checker_states_keep_their_codes(self):
        assert ApprovalFlag.SENT_TO_CHECKER.code == 6
        assert ApprovalFlag.CHECKER_IS_CHECKING.code == 7

    def test_unknown_code_rejected(self):
        with pytest.raises(ValueError):
            ApprovalFlag.from_code(42)

    def test_terminal_states(self):
        terminal = {flag for flag in ApprovalFlag if flag.is_terminal}
        assert terminal == {ApprovalFlag.COMPLETED, ApprovalFlag.REJECTED, ApprovalFlag.CANCELLED}


class TestFulfillmentSeverity:
    def test_total_order(self):
        ordered = [
            FulfillmentFlag.NEW_ITEM,
            FulfillmentFlag.NOT_CHECKED,
            FulfillmentFlag.IN_STOCK,
            FulfillmentFlag.OUT_OF_STOCK,
            FulfillmentFlag.REPORTED,
            FulfillmentFlag.NOT_AVAILABLE,
        ]
        for lower, higher in zip(ordered, ordered[1:]):
            assert higher.at_least(lower)
            assert lower.below(higher)
            assert not higher.below(lower)

    def test_side_states_have_no_severity(self):
        with pytest.raises(ValueError):
            FulfillmentFlag.REPLACED.severity
        with pytest.raises(ValueError):
            FulfillmentFlag.CANCELLED.at_least(FulfillmentFlag.NEW_ITEM)

    def test_shortage_flags(self):
        assert FulfillmentFlag.OUT_OF_STOCK.is_shortage
        assert FulfillmentFlag.REPORTED.is_shortage
        assert not FulfillmentFlag.NOT_AVAILABLE.is_shortage
        assert not FulfillmentFlag.IN_STOCK.is_shortage

    def test_stock_decision(self):
        assert not FulfillmentFlag.NOT_CHECKED.has_stock_decision
        assert FulfillmentFlag.IN_STOCK.has_stock_decision
        assert FulfillmentFlag.NOT_AVAILABLE.has_stock_decision
        assert not FulfillmentFlag.REPLACED.has_stock_decision


class TestAssignments:
    def test_unassigned_is_falsy_singleton(self):
        assert not UNASSIGNED
        assert assignment_from_column(None) is UNASSIGNED

    def test_assigned_compares_by_actor(self):
        assert assignment_from_column(7) == Assigned(7)
        assert is_held_by(Assigned(7), 7)
        assert not is_held_by(Assigned(7), 8)
        assert not is_held_by(UNASSIGNED, 7)


class TestLineRules:
    def test_countable_lines(self):
        assert line_rules.is_countable(make_line(FulfillmentFlag.NOT_CHECKED))
        assert line_rules.is_countable(make_line(FulfillmentFlag.IN_STOCK))
        assert line_rules.is_countable(make_line(FulfillmentFlag.OUT_OF_STOCK, available="4"))
        assert not line_rules.is_countable(make_line(FulfillmentFlag.OUT_OF_STOCK, available="0"))
        assert not line_rules.is_countable(make_line(FulfillmentFlag.NOT_AVAILABLE))
        assert not line_rules.is_countable(make_line(FulfillmentFlag.REPLACED))
        assert not line_rules.is_countable(make_line(FulfillmentFlag.CANCELLED))

    def test_in_stock_requires_acceptance_for_shortages(self):
        assert line_rules.indicates_in_stock(make_line(FulfillmentFlag.IN_STOCK))
        assert not line_rules.indicates_in_stock(make_line(FulfillmentFlag.OUT_OF_STOCK, available="4"))
        assert line_rules.indicates_in_stock(
            make_line(FulfillmentFlag.OUT_OF_STOCK, available="4", accepted=True)
        )
        assert not line_rules.indicates_in_stock(make_line(FulfillmentFlag.NOT_CHECKED))

    def test_base_qty(self):
        assert line_rules.base_qty(make_line(FulfillmentFlag.IN_STOCK)) == Decimal("10")
        assert line_rules.base_qty(make_line(FulfillmentFlag.OUT_OF_STOCK, available="4")) == Decimal("4")

    def test_quantity_noise_is_not_a_change(self):
        assert not line_rules.quantity_changed("5", "5.00005")
        assert line_rules.quantity_changed("5", "5.0001")
        assert not line_rules.quantity_changed(0.1 + 0.2, "0.3")

    def test_to_decimal_avoids_binary_float_digits(self):
        assert line_rules.to_decimal(0.1) == Decimal("0.1")
        with pytest.raises(TypeError):
            line_rules.to_decimal(True)

    def test_display_hides_replaced_original(self):
        original = make_line(FulfillmentFlag.REPLACED, id=1, replaced_by_line_id=2)
        replacement = make_line(FulfillmentFlag.NEW_ITEM, id=2, replaces_line_id=1)
        cancelled = make_line(FulfillmentFlag.CANCELLED, id=3)

        items = line_rules.display_items([original, replacement, cancelled])

        assert [item.line.id for item in items] == [2, 3]
        assert items[0].replaces is original

    def test_audit_trail_keeps_every_line(self):
        original = make_line(FulfillmentFlag.REPLACED, id=1, replaced_by_line_id=2)
        replacement = make_line(FulfillmentFlag.IN_STOCK, id=2, replaces_line_id=1)

        entries = line_rules.audit_trail([original, replacement])

        assert entries[0].label == "Original item replaced"
        assert entries[0].replaced_by is replacement
        assert entries[1].label == "Available"
