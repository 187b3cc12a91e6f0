"""
Tests for the order lifecycle manager.
"""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from store_plane.errors import (
    ConfigurationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from store_plane.models.order import ORDER_STATUS_FLOW, OrderStatus
from store_plane.order_manager import OrderManager

from conftest import RecordingNotifier, assert_history_consistent, make_allocation, make_order


class TestCreateOrder:
    """Test order creation and validation."""

    @pytest.mark.asyncio
    async def test_create_prices_from_catalog(self, manager):
        order = await manager.create_order("6281234567890", "6281234567890@chat", "a1", 3)
        assert order.status == OrderStatus.PENDING
        assert order.item.price == 5000
        assert order.total_amount == 15000
        assert order.currency == "IDR"
        assert order.item.specifications.ram == "1GB"
        assert len(order.status_history) == 1
        assert order.status_history[0].updated_by == "system"
        assert order.status_history[0].notes == "Order created"
        assert await manager.get_order(order.id) is not None

    @pytest.mark.asyncio
    async def test_package_id_is_case_insensitive(self, manager):
        order = await manager.create_order("628111", "628111@chat", " C3 ", 1)
        assert order.item.package_id == "c3"
        assert order.total_amount == 7500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [1, 12])
    async def test_duration_bounds_accepted(self, manager, duration):
        order = await manager.create_order("628111", "628111@chat", "a1", duration)
        assert order.item.duration == duration

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, 13, -1])
    async def test_duration_out_of_range(self, manager, duration):
        with pytest.raises(ValidationError):
            await manager.create_order("628111", "628111@chat", "a1", duration)
        assert await manager.store.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_package(self, manager):
        with pytest.raises(ValidationError):
            await manager.create_order("628111", "628111@chat", "z9", 1)


class TestStatusTransitions:
    """Test the order state machine."""

    PAIRS = [(a, b) for a in OrderStatus for b in OrderStatus]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("current,requested", PAIRS)
    async def test_transition_table(self, manager, current, requested):
        await manager.store.create(make_order(status=current))
        if requested in ORDER_STATUS_FLOW[current]:
            order = await manager.update_status("ORD-TEST-1", requested, "admin")
            assert order.status == requested
            assert_history_consistent(order)
        else:
            with pytest.raises(InvalidTransitionError):
                await manager.update_status("ORD-TEST-1", requested, "admin")
            order = await manager.get_order("ORD-TEST-1")
            assert order.status == current
            assert len(order.status_history) == 1

    @pytest.mark.asyncio
    async def test_full_happy_path(self, manager):
        order = await manager.create_order("628111", "628111@chat", "b1", 1)
        for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.REFUNDED):
            order = await manager.update_status(order.id, status, "admin")
        assert [h.status for h in order.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
            OrderStatus.REFUNDED,
        ]
        assert_history_consistent(order)

    @pytest.mark.asyncio
    async def test_unknown_order(self, manager):
        with pytest.raises(NotFoundError):
            await manager.update_status("ORD-NOPE", OrderStatus.CONFIRMED, "admin")


class TestCancelAndDelete:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING])
    async def test_cancel_allowed(self, manager, status):
        await manager.store.create(make_order(status=status))
        order = await manager.cancel_order("ORD-TEST-1", "admin")
        assert order.status == OrderStatus.CANCELLED
        assert order.status_history[-1].notes == "Order cancelled"
        assert order.status_history[-1].updated_by == "admin"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    async def test_cancel_rejected(self, manager, status):
        await manager.store.create(make_order(status=status))
        with pytest.raises(InvalidStateError):
            await manager.cancel_order("ORD-TEST-1", "admin", "changed mind")

    @pytest.mark.asyncio
    async def test_cancel_reason_recorded(self, manager):
        await manager.store.create(make_order(status=OrderStatus.PENDING))
        order = await manager.cancel_order("ORD-TEST-1", "admin", "No payment")
        assert order.status_history[-1].notes == "No payment"

    @pytest.mark.asyncio
    async def test_delete_only_cancelled(self, manager):
        await manager.store.create(make_order(status=OrderStatus.PENDING))
        with pytest.raises(InvalidStateError):
            await manager.delete_order("ORD-TEST-1")
        await manager.cancel_order("ORD-TEST-1", "admin")
        assert await manager.delete_order("ORD-TEST-1") is True
        assert await manager.get_order("ORD-TEST-1") is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, manager):
        assert await manager.delete_order("ORD-NOPE") is False


class TestNotesAndFields:

    @pytest.mark.asyncio
    async def test_add_note_appends(self, manager):
        await manager.store.create(make_order())
        await manager.add_note("ORD-TEST-1", "first")
        order = await manager.add_note("ORD-TEST-1", "second")
        assert order.notes == "first\nsecond"
        assert order.admin_notes is None

    @pytest.mark.asyncio
    async def test_admin_note(self, manager):
        await manager.store.create(make_order())
        order = await manager.add_note("ORD-TEST-1", "verified transfer", admin=True)
        assert order.admin_notes == "verified transfer"

    @pytest.mark.asyncio
    async def test_add_note_missing_order(self, manager):
        assert await manager.add_note("ORD-NOPE", "x") is None

    @pytest.mark.asyncio
    async def test_payment_proof_and_server_link(self, manager):
        await manager.store.create(make_order())
        await manager.set_payment_proof("ORD-TEST-1", "receipt-1.jpg")
        order = await manager.set_server_id("ORD-TEST-1", "uuid-9")
        assert order.payment_proof == "receipt-1.jpg"
        assert order.server_id == "uuid-9"
        assert order.status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_status_shortcuts(self, manager):
        await manager.store.create(make_order("ORD-P", status=OrderStatus.PENDING))
        await manager.store.create(make_order("ORD-C", status=OrderStatus.COMPLETED))
        assert [o.id for o in await manager.pending_orders()] == ["ORD-P"]
        assert [o.id for o in await manager.completed_orders()] == ["ORD-C"]
        assert await manager.processing_orders() == []


class TestProvisionServer:
    """Test provisioning through the order manager."""

    @pytest.mark.asyncio
    async def test_success_completes_order(self, manager, mock_panel):
        await manager.store.create(make_order())
        result = await manager.provision_server("ORD-TEST-1")

        assert result.success is True
        order = await manager.get_order("ORD-TEST-1")
        assert order.status == OrderStatus.COMPLETED
        assert order.server_id == "uuid-42"
        assert "Auto-provisioned: Server ID 42, User ID 7" in order.admin_notes
        assert [h.notes for h in order.status_history[-2:]] == [
            "Auto-provisioning started",
            "Auto-provisioning completed successfully",
        ]
        assert_history_consistent(order)

    @pytest.mark.asyncio
    async def test_unconfigured_panel_leaves_order_untouched(self, manager, mock_panel):
        mock_panel.is_configured.return_value = False
        await manager.store.create(make_order())

        with pytest.raises(ConfigurationError):
            await manager.provision_server("ORD-TEST-1")

        order = await manager.get_order("ORD-TEST-1")
        assert order.status == OrderStatus.CONFIRMED
        assert len(order.status_history) == 1
        mock_panel.health_check.assert_not_awaited()
        mock_panel.create_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processing_order_reverts_when_panel_unavailable(self, manager, mock_panel):
        mock_panel.health_check.return_value = False
        await manager.store.create(make_order(status=OrderStatus.PROCESSING))

        with pytest.raises(ConfigurationError):
            await manager.provision_server("ORD-TEST-1")

        order = await manager.get_order("ORD-TEST-1")
        assert order.status == OrderStatus.CONFIRMED
        assert order.status_history[-1].notes.startswith("Auto-provisioning unavailable")
        assert_history_consistent(order)
        mock_panel.create_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unhealthy_panel(self, manager, mock_panel):
        mock_panel.health_check.return_value = False
        await manager.store.create(make_order())
        with pytest.raises(ConfigurationError):
            await manager.provision_server("ORD-TEST-1")
        assert (await manager.get_order("ORD-TEST-1")).status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_failure_reverts_to_confirmed(self, manager, mock_panel):
        mock_panel.create_server = AsyncMock(side_effect=RuntimeError("node offline"))
        await manager.store.create(make_order())

        result = await manager.provision_server("ORD-TEST-1")

        assert result.success is False
        order = await manager.get_order("ORD-TEST-1")
        assert order.status == OrderStatus.CONFIRMED
        assert order.server_id is None
        assert order.status_history[-1].notes == "Auto-provisioning failed: node offline"
        mock_panel.delete_user.assert_awaited_once_with(7)
        assert_history_consistent(order)

    @pytest.mark.asyncio
    async def test_unexpected_error_reverts_to_confirmed(self, manager):
        manager.orchestrator.provision = AsyncMock(side_effect=RuntimeError("boom"))
        await manager.store.create(make_order())

        result = await manager.provision_server("ORD-TEST-1")

        assert result.success is False
        assert result.error == "boom"
        order = await manager.get_order("ORD-TEST-1")
        assert order.status == OrderStatus.CONFIRMED
        assert order.status_history[-1].notes == "Auto-provisioning error: boom"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    async def test_wrong_status(self, manager, mock_panel, status):
        await manager.store.create(make_order(status=status))
        with pytest.raises(InvalidStateError):
            await manager.provision_server("ORD-TEST-1")
        mock_panel.create_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_order(self, manager):
        with pytest.raises(NotFoundError):
            await manager.provision_server("ORD-NOPE")

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, manager, mock_panel):
        mock_panel.list_allocations = AsyncMock(return_value=[])
        await manager.store.create(make_order())
        first = await manager.provision_server("ORD-TEST-1")
        assert first.success is False

        mock_panel.list_allocations = AsyncMock(return_value=[make_allocation()])
        second = await manager.retry_provisioning("ORD-TEST-1")
        assert second.success is True
        assert (await manager.get_order("ORD-TEST-1")).status == OrderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_provisioning_status(self, manager):
        status = await manager.provisioning_status()
        assert status["enabled"] is True
        assert status["healthy"] is True
        assert "a1" in status["mapped_packages"]


@pytest_asyncio.fixture
async def notifying_manager(order_store, orchestrator, notifier):
    mgr = OrderManager(order_store, orchestrator, currency="IDR", notifier=notifier)
    await mgr.initialize()
    return mgr


class TestCustomerNotifications:
    """Test the messages customers get as their order moves."""

    @pytest.mark.asyncio
    async def test_order_created(self, notifying_manager, notifier):
        order = await notifying_manager.create_order("628111", "628111@chat", "a1", 2)
        assert len(notifier.sent) == 1
        recipient, text = notifier.sent[0]
        assert recipient == "628111@chat"
        assert order.id in text
        assert "IDR 10.000" in text
        assert "Awaiting confirmation" in text

    @pytest.mark.asyncio
    async def test_status_change_and_cancel(self, notifying_manager, notifier):
        await notifying_manager.store.create(make_order(status=OrderStatus.PENDING))
        await notifying_manager.update_status("ORD-TEST-1", OrderStatus.CONFIRMED, "admin")
        await notifying_manager.cancel_order("ORD-TEST-1", "admin")

        texts = [text for _, text in notifier.sent]
        assert len(texts) == 2
        assert "Status: Confirmed" in texts[0]
        assert "Status: Cancelled" in texts[1]

    @pytest.mark.asyncio
    async def test_rejected_transition_sends_nothing(self, notifying_manager, notifier):
        await notifying_manager.store.create(make_order(status=OrderStatus.PENDING))
        with pytest.raises(InvalidTransitionError):
            await notifying_manager.update_status("ORD-TEST-1", OrderStatus.COMPLETED, "admin")
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_credentials_sent_after_provisioning(self, notifying_manager, notifier):
        await notifying_manager.store.create(make_order())
        result = await notifying_manager.provision_server("ORD-TEST-1")

        assert len(notifier.sent) == 1
        recipient, text = notifier.sent[0]
        assert recipient == "6281234567890@chat"
        assert "Your Server Is Ready" in text
        assert f"Password: {result.credentials.password}" in text
        assert f"Username: {result.credentials.username}" in text
        assert "A1-ORD-TEST-1" in text

    @pytest.mark.asyncio
    async def test_failure_notice_after_revert(self, notifying_manager, notifier, mock_panel):
        mock_panel.create_server = AsyncMock(side_effect=RuntimeError("node offline"))
        await notifying_manager.store.create(make_order())

        await notifying_manager.provision_server("ORD-TEST-1")

        assert len(notifier.sent) == 1
        assert "Server Setup Delayed" in notifier.sent[0][1]
        assert "node offline" not in notifier.sent[0][1]

    @pytest.mark.asyncio
    async def test_unconfigured_panel_sends_nothing(self, notifying_manager, notifier, mock_panel):
        mock_panel.is_configured.return_value = False
        await notifying_manager.store.create(make_order())
        with pytest.raises(ConfigurationError):
            await notifying_manager.provision_server("ORD-TEST-1")
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_broken_notifier_does_not_fail_operation(self, order_store, orchestrator):
        notifier = RecordingNotifier()
        notifier.send = AsyncMock(side_effect=RuntimeError("gateway down"))
        mgr = OrderManager(order_store, orchestrator, notifier=notifier)
        await mgr.initialize()

        order = await mgr.create_order("628111", "628111@chat", "a1", 1)

        assert await mgr.get_order(order.id) is not None
        notifier.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gateway_rejection_does_not_fail_operation(self, order_store, orchestrator):
        mgr = OrderManager(order_store, orchestrator, notifier=RecordingNotifier(succeed=False))
        await mgr.initialize()
        order = await mgr.create_order("628111", "628111@chat", "a1", 1)
        assert order.status == OrderStatus.PENDING
