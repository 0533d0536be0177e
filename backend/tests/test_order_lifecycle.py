"""
Order state machine: transitions, guards, atomicity and notifications.
"""

from decimal import Decimal

from orderflow.errors import GuardViolation, NotPermitted, OrderCancelled
from orderflow.flags import ApprovalFlag, FulfillmentFlag, Role
from orderflow.models import Order, OrderLine
from orderflow.services import line_service, order_service
from orderflow.services.notification_service import order_changed
from orderflow.services.repository import load_lines, load_order


class TestDrafting:
    def test_create_order(self, make_order, salesman):
        order_id = make_order(freight_charge="3.25")
        order = load_order(order_id)

        assert order.approval_flag == ApprovalFlag.NEW
        assert order.salesman_id == salesman.actor_id
        assert order.freight_charge == Decimal("3.25")
        assert [line.fulfillment_flag for line in order.lines] == [FulfillmentFlag.NEW_ITEM] * 2

    def test_create_rejects_bad_lines(self, db_session, salesman):
        result = order_service.create_order(
            salesman, lines=[{"product_ref": "SKU", "ordered_qty": "0", "rate": "1"}]
        )
        assert isinstance(result.failure, GuardViolation)
        assert db_session.query(Order).count() == 0

    def test_unparseable_quantity_leaves_nothing_behind(self, db_session, salesman):
        result = order_service.create_order(
            salesman,
            lines=[
                {"product_ref": "SKU-A", "ordered_qty": "5", "rate": "1"},
                {"product_ref": "SKU-B", "ordered_qty": "abc", "rate": "1"},
            ],
        )
        assert isinstance(result.failure, GuardViolation)
        assert "ordered_qty must be a number" in str(result.failure)

        order_service.create_order(
            salesman, lines=[{"product_ref": "SKU-C", "ordered_qty": "1", "rate": "1"}]
        ).unwrap()

        assert db_session.query(Order).count() == 1
        assert [line.product_ref for line in db_session.query(OrderLine)] == ["SKU-C"]

    def test_non_finite_freight_rejected(self, make_order, salesman):
        order_id = make_order()
        result = order_service.update_freight(order_id, salesman, "NaN")
        assert isinstance(result.failure, GuardViolation)
        assert load_order(order_id).freight_charge == Decimal("0")

    def test_storekeeper_cannot_create(self, db_session, storekeeper):
        result = order_service.create_order(storekeeper, lines=[])
        assert isinstance(result.failure, NotPermitted)

    def test_add_line_only_while_new(self, make_order, flow, salesman):
        order_id = make_order()
        assert order_service.add_line(order_id, salesman, "SKU-C", "2", "1").ok
        flow.submit(order_id)

        result = order_service.add_line(order_id, salesman, "SKU-D", "2", "1")
        assert isinstance(result.failure, GuardViolation)
        assert len(load_lines(order_id)) == 3

    def test_other_salesman_cannot_touch(self, make_order, other_salesman):
        order_id = make_order()
        result = order_service.update_note(order_id, other_salesman, "mine now")
        assert isinstance(result.failure, NotPermitted)

    def test_negative_freight_rejected(self, make_order, salesman):
        order_id = make_order()
        assert not order_service.update_freight(order_id, salesman, "-1").ok
        assert order_service.update_freight(order_id, salesman, "8").ok
        assert load_order(order_id).freight_charge == Decimal("8")


class TestSubmit:
    def test_submit_advances_lines_and_notifies(self, make_order, salesman, notifier):
        order_id = make_order()
        result = order_service.submit_order(order_id, salesman)

        assert result.ok
        order = load_order(order_id)
        assert order.approval_flag == ApprovalFlag.SENT_TO_STOREKEEPER
        assert order.submitted_at is not None
        assert {line.fulfillment_flag for line in order.lines} == {FulfillmentFlag.NOT_CHECKED}
        assert Role.STOREKEEPER in notifier.roles_for(order_id)

    def test_submit_requires_lines(self, make_order, salesman, notifier):
        order_id = make_order(lines=[])
        result = order_service.submit_order(order_id, salesman)

        assert isinstance(result.failure, GuardViolation)
        assert load_order(order_id).approval_flag == ApprovalFlag.NEW
        assert notifier.sent == []

    def test_submit_missing_order(self, db_session, salesman):
        result = order_service.submit_order(777, salesman)
        assert result.failure.kind == "NOT_FOUND"


class TestStorekeeperStage:
    def test_inform_updates_requires_decisions(self, make_order, flow, storekeeper, snapshot_rows):
        order_id = make_order()
        flow.submit(order_id)
        first = flow.line_ids(order_id)[0]
        assert line_service.mark_in_stock(first, storekeeper).ok

        before = snapshot_rows(order_id)
        result = order_service.inform_updates(order_id, storekeeper)

        assert isinstance(result.failure, GuardViolation)
        assert result.failure.reason == "unchecked items remain"
        assert snapshot_rows(order_id) == before

    def test_inform_updates_verifies(self, make_order, flow, storekeeper, notifier):
        order_id = make_order()
        flow.submit(order_id)
        first, second = flow.line_ids(order_id)
        assert line_service.mark_in_stock(first, storekeeper).ok
        assert line_service.report_shortage(second, storekeeper, "0").ok

        assert order_service.inform_updates(order_id, storekeeper).ok
        assert load_order(order_id).approval_flag == ApprovalFlag.VERIFIED_BY_STOREKEEPER
        assert Role.SALESMAN in notifier.roles_for(order_id)

    def test_complete_verified_order(self, make_order, flow, salesman, storekeeper):
        order_id = make_order()
        flow.submit(order_id)
        flow.stock_all(order_id)
        assert order_service.inform_updates(order_id, storekeeper).ok

        assert order_service.complete_order(order_id, salesman).ok
        order = load_order(order_id)
        assert order.approval_flag == ApprovalFlag.COMPLETED
        assert all(line.estimated_total == Decimal("50") for line in order.lines)


class TestSendToChecker:
    def test_requires_every_line_in_stock(self, make_order, flow, salesman, storekeeper):
        order_id = make_order()
        flow.submit(order_id)
        first = flow.line_ids(order_id)[0]
        assert line_service.mark_in_stock(first, storekeeper).ok

        result = order_service.send_to_checker(order_id, salesman)
        assert result.failure.reason == "not all items in stock"

    def test_resend_with_unresolved_shortage(self, make_order, flow, salesman, db_session, snapshot_rows):
        """Order already at SENT_TO_CHECKER with a line out of stock and nothing available."""
        order_id = make_order()
        flow.to_checker(order_id)
        line = db_session.get(OrderLine, flow.line_ids(order_id)[0])
        line.fulfillment_flag = FulfillmentFlag.OUT_OF_STOCK
        line.available_qty = Decimal("0")
        db_session.commit()

        before = snapshot_rows(order_id)
        result = order_service.send_to_checker(order_id, salesman)

        assert isinstance(result.failure, GuardViolation)
        assert result.failure.reason == "not all items in stock"
        assert snapshot_rows(order_id) == before
        assert load_order(order_id).approval_flag == ApprovalFlag.SENT_TO_CHECKER

    def test_snapshots_estimates(self, make_order, flow):
        order_id = make_order()
        flow.to_checker(order_id)

        lines = load_lines(order_id)
        assert [line.estimated_qty for line in lines] == [Decimal("10"), Decimal("10")]
        assert [line.estimated_total for line in lines] == [Decimal("50"), Decimal("50")]

    def test_biller_and_checker_report_separately(self, make_order, flow, salesman, biller):
        order_id = make_order()
        flow.submit(order_id)
        flow.stock_all(order_id)
        assert order_service.claim_service.try_claim(
            order_service.ResourceKind.ORDER, order_id, Role.BILLER, 31
        ).ok

        results = order_service.send_to_biller_and_checker(
            order_id, salesman, biller_id=biller.actor_id
        )

        assert results["checker"].ok
        assert not results["biller"].ok
        assert results["biller"].failure.by == 31
        assert load_order(order_id).approval_flag == ApprovalFlag.SENT_TO_CHECKER


class TestCheckerStage:
    def test_claim_starts_checking(self, make_order, flow, checker):
        order_id = make_order()
        flow.to_checker(order_id)

        token = order_service.claim_as_checker(order_id, checker).unwrap()
        assert token.actor_id == checker.actor_id
        assert load_order(order_id).approval_flag == ApprovalFlag.CHECKER_IS_CHECKING

    def test_submit_requires_every_countable_line_checked(self, make_order, flow, checker, snapshot_rows):
        order_id = make_order()
        flow.checking(order_id)
        first, second = flow.line_ids(order_id)

        before = snapshot_rows(order_id)
        result = order_service.submit_checked_report(
            order_id, checker, edited_qty={first: Decimal("8")}, checked=[first]
        )

        assert result.failure.reason == "unchecked items remain"
        assert snapshot_rows(order_id) == before

    def test_submit_completes_and_notifies(self, make_order, flow, checker, notifier):
        order_id = make_order()
        flow.checking(order_id)
        first, second = flow.line_ids(order_id)
        notifier.clear()

        result = order_service.submit_checked_report(
            order_id, checker, edited_qty={first: Decimal("8")}, checked=[first, second]
        )

        assert result.ok
        order = load_order(order_id)
        assert order.approval_flag == ApprovalFlag.COMPLETED
        assert order.completed_at is not None
        lines = load_lines(order_id)
        assert lines[0].ordered_qty == Decimal("8")
        assert lines[0].estimated_qty == Decimal("10")
        assert set(notifier.roles_for(order_id)) == {Role.BILLER, Role.SALESMAN}

    def test_not_available_lines_do_not_block(self, make_order, flow, salesman, storekeeper, checker):
        order_id = make_order()
        flow.submit(order_id)
        first, second = flow.line_ids(order_id)
        assert line_service.report_shortage(first, storekeeper, "0").ok
        assert line_service.mark_not_available(first, salesman).ok
        assert line_service.mark_in_stock(second, storekeeper).ok
        assert order_service.send_to_checker(order_id, salesman).ok
        assert order_service.claim_as_checker(order_id, checker).ok

        assert order_service.submit_checked_report(order_id, checker, checked=[second]).ok


class TestTerminalStates:
    def test_cancel_then_everything_fails_fast(self, make_order, flow, salesman, storekeeper):
        order_id = make_order()
        flow.submit(order_id)
        assert order_service.cancel_order(order_id, salesman).ok

        for result in (
            order_service.cancel_order(order_id, salesman),
            order_service.claim_as_storekeeper(order_id, storekeeper),
            order_service.send_to_checker(order_id, salesman),
            line_service.mark_in_stock(flow.line_ids(order_id)[0], storekeeper),
        ):
            assert isinstance(result.failure, OrderCancelled)
            assert str(result.failure) == "order is cancelled"

    def test_only_owner_or_admin_cancels(self, make_order, other_salesman, admin):
        order_id = make_order()
        assert isinstance(order_service.cancel_order(order_id, other_salesman).failure, NotPermitted)
        assert order_service.cancel_order(order_id, admin).ok
        assert load_order(order_id).cancelled_by_id == admin.actor_id

    def test_reject_is_admin_only(self, make_order, salesman, admin):
        order_id = make_order()
        assert isinstance(order_service.reject_order(order_id, salesman, "no").failure, NotPermitted)

        assert order_service.reject_order(order_id, admin, "duplicate").ok
        order = load_order(order_id)
        assert order.approval_flag == ApprovalFlag.REJECTED
        assert order.rejection_reason == "duplicate"

    def test_completed_order_cannot_be_cancelled(self, make_order, flow, salesman, checker):
        order_id = make_order()
        flow.checking(order_id)
        assert order_service.submit_checked_report(order_id, checker, checked=flow.line_ids(order_id)).ok

        result = order_service.cancel_order(order_id, salesman)
        assert isinstance(result.failure, GuardViolation)
        assert not isinstance(result.failure, OrderCancelled)


class TestBilling:
    def test_mark_billed(self, make_order, flow, checker, biller):
        order_id = make_order()
        flow.checking(order_id)
        assert order_service.submit_checked_report(order_id, checker, checked=flow.line_ids(order_id)).ok

        assert order_service.mark_billed(order_id, biller).ok
        order = load_order(order_id)
        assert order.is_billed
        assert order.biller_id == biller.actor_id
        assert isinstance(order_service.mark_billed(order_id, biller).failure, GuardViolation)

    def test_cannot_bill_before_completion(self, make_order, flow, biller):
        order_id = make_order()
        flow.to_checker(order_id)
        assert isinstance(order_service.mark_billed(order_id, biller).failure, GuardViolation)


class TestNotifications:
    def test_failed_delivery_does_not_undo_transition(self, make_order, salesman, notifier):
        order_id = make_order()
        notifier.fail = True

        assert order_service.submit_order(order_id, salesman).ok
        assert load_order(order_id).approval_flag == ApprovalFlag.SENT_TO_STOREKEEPER

    def test_order_changed_signal(self, app, make_order, salesman):
        seen = []

        def receiver(sender, order_id):
            seen.append(order_id)

        order_id = make_order()
        with order_changed.connected_to(receiver):
            order_service.submit_order(order_id, salesman)
            order_service.submit_order(order_id, salesman)

        assert seen == [order_id]
