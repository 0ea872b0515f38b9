"""
Async Postgres order store: orders + order_items (source of truth), catalog and
identity tables read at creation time, rider/vendor aggregates and the
processed_events idempotency log maintained by the worker.
Status changes are single conditional UPDATEs; the row that comes back (or not)
is the outcome of the compare-and-set.
"""
import logging
import uuid
from typing import Optional

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from campus_eats.config import settings
from campus_eats.models import MenuItem, NewOrder, Order, OrderFilter, OrderItem, Review, RiderProfile, Vendor
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.store import OrderStore

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS user_roles (
                user_id TEXT PRIMARY KEY,
                role VARCHAR(20) NOT NULL CHECK (role IN ('student', 'vendor', 'rider'))
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS vendors (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                location TEXT,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                rating NUMERIC(3, 2) NOT NULL DEFAULT 0
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS menu_items (
                id TEXT PRIMARY KEY,
                vendor_id TEXT NOT NULL REFERENCES vendors(id),
                name TEXT NOT NULL,
                price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
                is_available BOOLEAN NOT NULL DEFAULT TRUE
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                customer_id TEXT NOT NULL,
                vendor_id TEXT NOT NULL REFERENCES vendors(id),
                rider_id TEXT,
                status VARCHAR(20) NOT NULL DEFAULT 'pending',
                delivery_location TEXT NOT NULL,
                delivery_notes TEXT,
                total_amount NUMERIC(12, 2) NOT NULL,
                delivery_fee NUMERIC(10, 2) NOT NULL,
                otp_code VARCHAR(12),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CHECK ((rider_id IS NOT NULL) = (status IN ('assigned', 'picked_up', 'in_transit', 'delivered')))
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_customer ON orders(customer_id, created_at DESC);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_vendor ON orders(vendor_id, created_at DESC);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_rider ON orders(rider_id, created_at DESC);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_available
            ON orders(created_at DESC) WHERE status = 'ready' AND rider_id IS NULL;
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id BIGSERIAL PRIMARY KEY,
                order_id TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                menu_item_id TEXT NOT NULL,
                item_name TEXT NOT NULL,
                quantity INT NOT NULL CHECK (quantity > 0),
                unit_price NUMERIC(10, 2) NOT NULL
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS rider_profiles (
                user_id TEXT PRIMARY KEY,
                total_deliveries INT NOT NULL DEFAULT 0,
                rating NUMERIC(3, 2) NOT NULL DEFAULT 0
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS reviews (
                order_id TEXT PRIMARY KEY REFERENCES orders(id),
                customer_id TEXT NOT NULL,
                rating SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
                comment TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS processed_events (
                event_id TEXT PRIMARY KEY,
                event_type VARCHAR(30) NOT NULL,
                processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)


_RECOMPUTE_RIDER_RATING = """
    UPDATE rider_profiles SET rating = COALESCE((
        SELECT ROUND(AVG(r.rating), 2)
        FROM reviews r JOIN orders o ON o.id = r.order_id
        WHERE o.rider_id = $1 AND o.status = 'delivered'
    ), 0)
    WHERE user_id = $1;
"""

_RECOMPUTE_VENDOR_RATING = """
    UPDATE vendors SET rating = COALESCE((
        SELECT ROUND(AVG(r.rating), 2)
        FROM reviews r JOIN orders o ON o.id = r.order_id
        WHERE o.vendor_id = $1
    ), 0)
    WHERE id = $1;
"""


class _DuplicateEvent(Exception):
    """event_id already in processed_events. Transaction will roll back."""


class PostgresOrderStore(OrderStore):
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_user_role(self, user_id: str) -> Optional[ActorRole]:
        role = await self.pool.fetchval("SELECT role FROM user_roles WHERE user_id = $1;", user_id)
        return ActorRole(role) if role else None

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        row = await self.pool.fetchrow("SELECT * FROM vendors WHERE id = $1;", vendor_id)
        return Vendor.from_record(row)

    async def get_vendor_by_user(self, user_id: str) -> Optional[Vendor]:
        row = await self.pool.fetchrow("SELECT * FROM vendors WHERE user_id = $1;", user_id)
        return Vendor.from_record(row)

    async def get_menu_items(self, menu_item_ids: list[str]) -> dict[str, MenuItem]:
        rows = await self.pool.fetch("SELECT * FROM menu_items WHERE id = ANY($1::text[]);", menu_item_ids)
        return {str(r["id"]): MenuItem.from_record(r) for r in rows}

    async def insert_order(self, new_order: NewOrder) -> Order:
        order_id = str(uuid.uuid4())
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO orders (id, customer_id, vendor_id, status, delivery_location, delivery_notes,
                                        total_amount, delivery_fee)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *;
                    """,
                    order_id,
                    new_order.customer_id,
                    new_order.vendor_id,
                    OrderStatus.PENDING.value,
                    new_order.delivery_location,
                    new_order.delivery_notes,
                    new_order.total_amount,
                    new_order.delivery_fee,
                )
                await conn.executemany(
                    """
                    INSERT INTO order_items (order_id, menu_item_id, item_name, quantity, unit_price)
                    VALUES ($1, $2, $3, $4, $5);
                    """,
                    [(order_id, i.menu_item_id, i.name, i.quantity, i.unit_price) for i in new_order.items],
                )
        return Order.from_record(row, items=new_order.items)

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.pool.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        if row is None:
            return None
        items = await self._items_for([order_id])
        return Order.from_record(row, items=items.get(order_id, ()))

    async def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        clauses: list[str] = []
        args: list = []

        def bind(value) -> str:
            args.append(value)
            return f"${len(args)}"

        if order_filter.customer_id is not None:
            clauses.append(f"customer_id = {bind(order_filter.customer_id)}")
        if order_filter.vendor_id is not None:
            clauses.append(f"vendor_id = {bind(order_filter.vendor_id)}")
        if order_filter.rider_id is not None:
            clauses.append(f"rider_id = {bind(order_filter.rider_id)}")
        if order_filter.statuses is not None:
            clauses.append(f"status = ANY({bind([s.value for s in order_filter.statuses])}::text[])")
        if order_filter.unassigned_only:
            clauses.append("rider_id IS NULL")

        sql = "SELECT * FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC"
        if order_filter.limit is not None:
            sql += f" LIMIT {bind(order_filter.limit)}"

        rows = await self.pool.fetch(sql + ";", *args)
        items = await self._items_for([str(r["id"]) for r in rows])
        return [Order.from_record(r, items=items.get(str(r["id"]), ())) for r in rows]

    async def update_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> Optional[Order]:
        row = await self.pool.fetchrow(
            """
            UPDATE orders SET
                status = $3::varchar,
                rider_id = CASE WHEN $3::varchar = 'cancelled' THEN NULL ELSE rider_id END,
                otp_code = CASE WHEN $3::varchar = 'cancelled' THEN NULL ELSE otp_code END,
                updated_at = NOW()
            WHERE id = $1 AND status = $2
            RETURNING *;
            """,
            order_id,
            expected_status.value,
            new_status.value,
        )
        if row is None:
            return None
        items = await self._items_for([order_id])
        return Order.from_record(row, items=items.get(order_id, ()))

    async def claim(self, order_id: str, rider_id: str, otp_code: str) -> Optional[Order]:
        row = await self.pool.fetchrow(
            """
            UPDATE orders SET rider_id = $2, status = 'assigned', otp_code = $3, updated_at = NOW()
            WHERE id = $1 AND rider_id IS NULL AND status = 'ready'
            RETURNING *;
            """,
            order_id,
            rider_id,
            otp_code,
        )
        if row is None:
            return None
        items = await self._items_for([order_id])
        return Order.from_record(row, items=items.get(order_id, ()))

    async def insert_review(self, order_id: str, customer_id: str, rating: int, comment: Optional[str]) -> Optional[Review]:
        try:
            row = await self.pool.fetchrow(
                """
                INSERT INTO reviews (order_id, customer_id, rating, comment)
                VALUES ($1, $2, $3, $4)
                RETURNING *;
                """,
                order_id,
                customer_id,
                rating,
                comment,
            )
        except UniqueViolationError:
            return None
        return Review.from_record(row)

    async def get_rider_profile(self, user_id: str) -> Optional[RiderProfile]:
        row = await self.pool.fetchrow("SELECT * FROM rider_profiles WHERE user_id = $1;", user_id)
        return RiderProfile.from_record(row)

    async def apply_delivery_event(self, event_id: str, rider_id: str) -> bool:
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    await self._mark_processed(conn, event_id, "delivered")
                    await conn.execute(
                        """
                        INSERT INTO rider_profiles (user_id, total_deliveries) VALUES ($1, 1)
                        ON CONFLICT (user_id) DO UPDATE
                        SET total_deliveries = rider_profiles.total_deliveries + 1;
                        """,
                        rider_id,
                    )
                    await conn.execute(_RECOMPUTE_RIDER_RATING, rider_id)
            except _DuplicateEvent:
                return False
        return True

    async def apply_review_event(self, event_id: str, order_id: str) -> bool:
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction():
                    await self._mark_processed(conn, event_id, "reviewed")
                    row = await conn.fetchrow("SELECT rider_id, vendor_id FROM orders WHERE id = $1;", order_id)
                    if row is None:
                        logger.warning("Review event for unknown order_id=%s", order_id)
                        return True
                    if row["rider_id"]:
                        await conn.execute(
                            "INSERT INTO rider_profiles (user_id) VALUES ($1) ON CONFLICT (user_id) DO NOTHING;",
                            row["rider_id"],
                        )
                        await conn.execute(_RECOMPUTE_RIDER_RATING, row["rider_id"])
                    await conn.execute(_RECOMPUTE_VENDOR_RATING, row["vendor_id"])
            except _DuplicateEvent:
                return False
        return True

    async def _mark_processed(self, conn, event_id: str, event_type: str) -> None:
        try:
            await conn.execute(
                "INSERT INTO processed_events (event_id, event_type) VALUES ($1, $2);",
                event_id,
                event_type,
            )
        except UniqueViolationError:
            raise _DuplicateEvent()

    async def _items_for(self, order_ids: list[str]) -> dict[str, tuple[OrderItem, ...]]:
        if not order_ids:
            return {}
        rows = await self.pool.fetch(
            "SELECT * FROM order_items WHERE order_id = ANY($1::text[]) ORDER BY id;",
            order_ids,
        )
        grouped: dict[str, list[OrderItem]] = {}
        for r in rows:
            grouped.setdefault(str(r["order_id"]), []).append(OrderItem.from_record(r))
        return {order_id: tuple(items) for order_id, items in grouped.items()}
