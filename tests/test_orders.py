import unittest
from datetime import datetime, timezone

from cart.engine import CartEngine
from checkout.coordinator import CheckoutCoordinator, CheckoutForm
from checkout.reconcile import reconcile_pending_stock
from db.cache import MemoryLocalCache
from db.models import OrderStatus, Product
from db.store import MemoryDocumentStore
from orders import history
from orders.workflow import ALLOWED_TRANSITIONS, OrderStatusWorkflow, can_transition
from utils.errors import (
    CancellationNotAllowedError,
    InvalidTransitionError,
    OrderAccessError,
    OrderNotFoundError,
    StockSyncError,
    StoreError,
)
from utils.state import SessionState

WHEN = datetime(2025, 12, 6, 12, 0, tzinfo=timezone.utc)


def _order(order_id, status="pending", user_id="u1", placed_at="2025-12-01T00:00:00+00:00"):
    return {
        "id": order_id,
        "placedAt": placed_at,
        "items": [{"id": "p1", "title": "Lamp", "price": 100.0, "quantity": 1}],
        "subtotal": 100.0,
        "tax": 18.0,
        "discount": 0,
        "total": 118.0,
        "finalTotal": 118.0,
        "status": status,
        "userId": user_id,
    }


class CountingStore(MemoryDocumentStore):
    def __init__(self, documents=None):
        super().__init__(documents)
        self.updates = []

    async def partial_update(self, path, fields):
        self.updates.append((path, dict(fields)))
        await super().partial_update(path, fields)


class UnreachableStore(MemoryDocumentStore):
    async def children(self, parent):
        raise StoreError("read", parent)


class TransitionTableTestCase(unittest.TestCase):
    def test_table(self):
        P, S, D, C = (
            OrderStatus.PENDING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        )
        self.assertTrue(can_transition(P, S))
        self.assertTrue(can_transition(P, C))
        self.assertTrue(can_transition(S, D))
        self.assertTrue(can_transition(S, C))
        self.assertFalse(can_transition(P, D))
        self.assertFalse(can_transition(D, S))
        self.assertFalse(can_transition(C, P))
        self.assertTrue(can_transition(D, D))
        for terminal in (D, C):
            self.assertTrue(terminal.is_terminal)
            self.assertEqual(ALLOWED_TRANSITIONS[terminal], frozenset())


class OrderStatusWorkflowTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = CountingStore(
            {
                "orders/A": _order("A"),
                "orders/B": _order("B", status="shipped"),
                "orders/C": _order("C", status="delivered"),
                "orders/D": _order("D", status="cancelled"),
            }
        )
        self.workflow = OrderStatusWorkflow(self.store)

    # ---------- admin ----------

    async def test_pending_to_shipped(self):
        order = await self.workflow.set_status("A", "shipped", when=WHEN)
        self.assertEqual(order.status, OrderStatus.SHIPPED)
        self.assertEqual(
            self.store.updates,
            [("orders/A", {"status": "shipped", "updatedAt": WHEN.isoformat()})],
        )
        doc = await self.store.read("orders/A")
        self.assertEqual(doc["status"], "shipped")
        # partial update only: the rest of the document is untouched
        self.assertEqual(doc["total"], 118.0)

    async def test_rejected_transitions_do_not_write(self):
        for order_id, target in (("A", "delivered"), ("C", "shipped"), ("D", "pending"), ("A", "lost")):
            with self.subTest(order_id=order_id, target=target):
                with self.assertRaises(InvalidTransitionError):
                    await self.workflow.set_status(order_id, target)
        self.assertEqual(self.store.updates, [])

    async def test_admin_cancel_stamps_cancelled_at(self):
        order = await self.workflow.set_status("B", OrderStatus.CANCELLED, when=WHEN)
        self.assertEqual(order.cancelled_at, WHEN.isoformat())
        self.assertEqual(self.store.updates[0][1]["cancelledAt"], WHEN.isoformat())

    async def test_reselecting_current_status_is_a_no_op(self):
        order = await self.workflow.set_status("C", "delivered")
        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.assertEqual(self.store.updates, [])

    async def test_items_without_product_id(self):
        doc = {**_order("E"), "items": [{"title": "Lamp", "price": 100, "quantity": 1}]}
        await self.store.write("orders/E", doc)

        order = await self.workflow.set_status("E", "shipped", when=WHEN)
        self.assertEqual(order.status, OrderStatus.SHIPPED)
        self.assertEqual(order.items[0].title, "Lamp")
        self.assertEqual(
            await history.status_counts(self.store),
            {"pending": 1, "shipped": 2, "delivered": 1, "cancelled": 1},
        )

    async def test_missing_order(self):
        with self.assertRaises(OrderNotFoundError):
            await self.workflow.set_status("Z", "shipped")

    # ---------- customer ----------

    async def test_customer_cancels_pending(self):
        order = await self.workflow.cancel_by_customer("A", "u1", when=WHEN)
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(
            self.store.updates,
            [("orders/A", {"status": "cancelled", "cancelledAt": WHEN.isoformat()})],
        )

    async def test_customer_cannot_cancel_shipped(self):
        with self.assertRaises(CancellationNotAllowedError) as ctx:
            await self.workflow.cancel_by_customer("B", "u1")
        self.assertEqual(ctx.exception.current, "shipped")
        self.assertEqual(self.store.updates, [])

    async def test_customer_cannot_cancel_someone_elses_order(self):
        with self.assertRaises(OrderAccessError):
            await self.workflow.cancel_by_customer("A", "u2")
        self.assertEqual(self.store.updates, [])


class OrderHistoryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.engine = CartEngine(MemoryLocalCache())
        self.engine.add_item(Product(id="p1", title="Lamp", price=100.0))
        self.local = self.engine.place_order()

    async def test_remote_orders_for_user(self):
        store = MemoryDocumentStore(
            {
                "orders/A": _order("A", placed_at="2025-12-01T00:00:00+00:00"),
                "orders/B": _order("B", placed_at="2025-12-05T00:00:00+00:00"),
                "orders/C": _order("C", user_id="u2"),
            }
        )
        orders = await history.load_customer_orders(store, self.engine, "u1")
        self.assertEqual([o.order_id for o in orders], ["B", "A"])

    async def test_falls_back_to_local_history(self):
        for store, user in (
            (MemoryDocumentStore(), "u1"),
            (UnreachableStore(), "u1"),
            (MemoryDocumentStore({"orders/A": _order("A")}), None),
        ):
            orders = await history.load_customer_orders(store, self.engine, user)
            self.assertEqual([o.order_id for o in orders], [self.local.order_id])

    async def test_admin_listing_and_counts(self):
        store = MemoryDocumentStore(
            {
                "orders/A": _order("A"),
                "orders/B": _order("B", status="shipped"),
                "orders/C": _order("C", status="shipped", user_id="u2"),
            }
        )
        shipped = await history.list_admin_orders(store, OrderStatus.SHIPPED)
        self.assertEqual({o.order_id for o in shipped}, {"B", "C"})
        self.assertEqual(
            await history.status_counts(store),
            {"pending": 1, "shipped": 2, "delivered": 0, "cancelled": 0},
        )

    def test_delivery_progress(self):
        self.assertEqual(history.delivery_progress(OrderStatus.PENDING), 0)
        self.assertEqual(history.delivery_progress(OrderStatus.DELIVERED), 100)
        self.assertIsNone(history.delivery_progress(OrderStatus.CANCELLED))


class FlakyStockStore(MemoryDocumentStore):
    def __init__(self, documents=None):
        super().__init__(documents)
        self.broken = True

    async def decrement_floor(self, path, field, amount, token=None):
        if self.broken and path.endswith("p2"):
            raise StoreError("decrement", path)
        return await super().decrement_floor(path, field, amount, token)


class ReconcileTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_retry_finishes_without_double_deduction(self):
        store = FlakyStockStore(
            {
                "products/p1": {"title": "Lamp", "price": 100.0, "stock": 5},
                "products/p2": {"title": "Mug", "price": 50.0, "stock": 5},
                "orders/LEGACY": {**_order("LEGACY"), "items": {"x": {"id": "p1"}}},
            }
        )
        engine = CartEngine(MemoryLocalCache())
        engine.add_item(Product(id="p1", title="Lamp", price=100.0))
        engine.add_item(Product(id="p2", title="Mug", price=50.0))
        engine.update_quantity("p2", 2)
        coordinator = CheckoutCoordinator(store, engine, user_id="u1")
        form = CheckoutForm("Asha", "Rao", "asha@example.com", "9845012345", "12 MG Road", "Bengaluru", "KA", "560001")

        with self.assertRaises(StockSyncError) as ctx:
            await coordinator.place_order(form)
        order_id = ctx.exception.order_id

        # store still failing: order stays pending
        report = await reconcile_pending_stock(store)
        self.assertEqual(report.still_pending, [order_id])
        self.assertEqual(report.skipped, ["LEGACY"])

        store.broken = False
        report = await reconcile_pending_stock(store)
        self.assertEqual(report.synced, [order_id])
        self.assertEqual((await store.read("products/p1"))["stock"], 4)
        self.assertEqual((await store.read("products/p2"))["stock"], 3)
        self.assertEqual((await store.read(f"orders/{order_id}"))["stockSync"], "synced")

        # nothing left to do
        report = await reconcile_pending_stock(store)
        self.assertEqual(report.synced, [])

    async def test_lines_without_product_id_are_skipped(self):
        store = MemoryDocumentStore(
            {
                "products/p1": {"title": "Lamp", "price": 100.0, "stock": 5},
                "orders/A": {
                    **_order("A"),
                    "stockSync": "pending",
                    "items": [
                        {"title": "Gift wrap", "price": 10, "quantity": 1},
                        {"id": "p1", "title": "Lamp", "price": 100.0, "quantity": 2},
                    ],
                },
            }
        )
        report = await reconcile_pending_stock(store)
        self.assertEqual(report.synced, ["A"])
        self.assertEqual(report.skipped, [])
        self.assertEqual((await store.read("products/p1"))["stock"], 3)


class SessionStateTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_roles_gate_status_changes(self):
        store = MemoryDocumentStore(
            {"products/p1": {"title": "Lamp", "price": 100.0, "stock": 2}}
        )
        customer = SessionState(cache=MemoryLocalCache(), store=store, uid="u1")
        cart = customer.start_session()
        cart.add_item(Product(id="p1", title="Lamp", price=100.0))
        customer.wishlist.add(Product(id="p9", title="Vase", price=10.0))

        result = await customer.checkout().place_order(
            CheckoutForm("Asha", "Rao", "asha@example.com", "9845012345", "12 MG Road", "Bengaluru", "KA", "560001")
        )
        order_id = result.order.order_id

        with self.assertRaises(OrderAccessError):
            await customer.set_order_status(order_id, "shipped")

        admin = SessionState(cache=MemoryLocalCache(), store=store, uid="a1", role="admin")
        shipped = await admin.set_order_status(order_id, "shipped")
        self.assertEqual(shipped.status, OrderStatus.SHIPPED)

        with self.assertRaises(CancellationNotAllowedError):
            await customer.cancel_order(order_id)

        customer.end_session()
        self.assertIsNone(customer.cart)
        self.assertIsNone(customer.uid)
