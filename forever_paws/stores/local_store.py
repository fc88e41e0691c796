"""
SQLite-backed local store: synced entity cache, cart and orders.

Every query on user data is filtered by user_id. Multi-row changes (a
reconciliation apply, checkout) run in a single transaction. Callers are
expected to submit mutations through the owner thread; each call opens its
own connection so reads from other threads are safe.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Type, TypeVar

from ..models.commerce import CartItem, Order, OrderItem, ShippingAddress
from ..models.entities import SyncedEntity
from ..utils.exceptions import PersistenceError
from ..utils.logger import get_logger

logger = get_logger(__name__)

EntityT = TypeVar("EntityT", bound=SyncedEntity)

SYNCED_TABLES = ("pets", "memorial_videos", "letters")
COMMERCE_TABLES = ("cart_items", "order_items", "orders")

_SCHEMA = [
    *(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            local_revision INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL
        )
        """
        for table in SYNCED_TABLES
    ),
    """
    CREATE TABLE IF NOT EXISTS cart_items (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        product_ref TEXT NOT NULL,
        product_name TEXT NOT NULL DEFAULT '',
        unit_price REAL NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        customization TEXT,
        added_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        total_amount REAL NOT NULL,
        currency TEXT NOT NULL,
        status TEXT NOT NULL,
        payment_status TEXT NOT NULL,
        shipping_address TEXT,
        tracking_number TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL REFERENCES orders(id),
        product_ref TEXT NOT NULL,
        product_name TEXT NOT NULL DEFAULT '',
        quantity INTEGER NOT NULL,
        unit_price REAL NOT NULL,
        total_price REAL NOT NULL,
        customization TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_cart_items_user ON cart_items(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)",
]


def _dump(value) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _load(raw: Optional[str]):
    return json.loads(raw) if raw else None


class LocalStore:
    """Local persistence for one installation (all users share the file)."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """One connection, one transaction. sqlite errors become PersistenceError."""
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"{action}: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error("Local store operation failed", action=action, error=str(e))
            raise PersistenceError(f"{action}: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._transaction("init schema") as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @staticmethod
    def _check_synced_table(table: str) -> None:
        if table not in SYNCED_TABLES:
            raise ValueError(f"Unknown synced table: {table}")

    # ------------------------------------------------------------------
    # Synced entities
    # ------------------------------------------------------------------

    def list_entities(self, table: str, model: Type[EntityT], user_id: str) -> List[EntityT]:
        self._check_synced_table(table)
        with self._transaction(f"list {table}") as conn:
            rows = conn.execute(
                f"SELECT payload, local_revision FROM {table} WHERE user_id = ? ORDER BY rowid",
                (user_id,),
            ).fetchall()
        out: List[EntityT] = []
        for row in rows:
            data = json.loads(row["payload"])
            data["local_revision"] = row["local_revision"]
            out.append(model.model_validate(data))
        return out

    def apply_reconciliation(
        self,
        table: str,
        user_id: str,
        upserts: Sequence[SyncedEntity],
        delete_ids: Sequence[str],
    ) -> None:
        """Delete and upsert rows for one user in a single transaction."""
        self._check_synced_table(table)
        with self._transaction(f"reconcile {table}") as conn:
            conn.executemany(
                f"DELETE FROM {table} WHERE id = ? AND user_id = ?",
                [(entity_id, user_id) for entity_id in delete_ids],
            )
            conn.executemany(
                f"""
                INSERT INTO {table} (id, user_id, local_revision, payload)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id = excluded.user_id,
                    local_revision = excluded.local_revision,
                    payload = excluded.payload
                """,
                [
                    (
                        entity.id,
                        user_id,
                        entity.local_revision,
                        entity.model_dump_json(exclude={"local_revision"}),
                    )
                    for entity in upserts
                ],
            )
        logger.debug(
            "Reconciliation applied",
            table=table,
            user_id=user_id,
            upserts=len(upserts),
            deletes=len(delete_ids),
        )

    def wipe_synced_and_cart(self) -> None:
        """Remove synced rows and cart rows of every user."""
        with self._transaction("wipe synced and cart") as conn:
            for table in SYNCED_TABLES + ("cart_items",):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Local synced data and carts wiped")

    def wipe_all(self) -> None:
        with self._transaction("wipe all") as conn:
            for table in SYNCED_TABLES + COMMERCE_TABLES:
                conn.execute(f"DELETE FROM {table}")
        logger.info("Local store wiped")

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    @staticmethod
    def _cart_item(row: sqlite3.Row) -> CartItem:
        return CartItem(
            id=row["id"],
            user_id=row["user_id"],
            product_ref=row["product_ref"],
            product_name=row["product_name"],
            unit_price=row["unit_price"],
            quantity=row["quantity"],
            customization=_load(row["customization"]),
            added_at=row["added_at"],
        )

    def list_cart(self, user_id: str) -> List[CartItem]:
        with self._transaction("list cart") as conn:
            rows = conn.execute(
                "SELECT * FROM cart_items WHERE user_id = ? ORDER BY added_at, rowid",
                (user_id,),
            ).fetchall()
        return [self._cart_item(row) for row in rows]

    def insert_cart_item(self, item: CartItem) -> None:
        with self._transaction("insert cart item") as conn:
            conn.execute(
                """
                INSERT INTO cart_items
                    (id, user_id, product_ref, product_name, unit_price, quantity, customization, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.user_id,
                    item.product_ref,
                    item.product_name,
                    item.unit_price,
                    item.quantity,
                    _dump(item.customization),
                    item.added_at.isoformat(),
                ),
            )

    def update_cart_item(self, item: CartItem) -> bool:
        with self._transaction("update cart item") as conn:
            cursor = conn.execute(
                """
                UPDATE cart_items
                SET quantity = ?, unit_price = ?, product_name = ?, customization = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    item.quantity,
                    item.unit_price,
                    item.product_name,
                    _dump(item.customization),
                    item.id,
                    item.user_id,
                ),
            )
            return cursor.rowcount > 0

    def delete_cart_item(self, item_id: str, user_id: str) -> bool:
        with self._transaction("delete cart item") as conn:
            cursor = conn.execute(
                "DELETE FROM cart_items WHERE id = ? AND user_id = ?", (item_id, user_id)
            )
            return cursor.rowcount > 0

    def clear_cart(self, user_id: str) -> int:
        with self._transaction("clear cart") as conn:
            return conn.execute("DELETE FROM cart_items WHERE user_id = ?", (user_id,)).rowcount

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order_from_cart(self, order: Order, user_id: str) -> None:
        """Insert the order and its items and clear the user's cart, atomically."""
        with self._transaction("create order") as conn:
            conn.execute(
                """
                INSERT INTO orders
                    (id, user_id, total_amount, currency, status, payment_status,
                     shipping_address, tracking_number, notes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.id,
                    user_id,
                    order.total_amount,
                    order.currency,
                    order.status.value,
                    order.payment_status.value,
                    order.shipping_address.model_dump_json() if order.shipping_address else None,
                    order.tracking_number,
                    order.notes,
                    order.created_at.isoformat(),
                    order.updated_at.isoformat(),
                ),
            )
            conn.executemany(
                """
                INSERT INTO order_items
                    (id, order_id, product_ref, product_name, quantity, unit_price, total_price, customization)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        order.id,
                        item.product_ref,
                        item.product_name,
                        item.quantity,
                        item.unit_price,
                        item.total_price,
                        _dump(item.customization),
                    )
                    for item in order.items
                ],
            )
            conn.execute("DELETE FROM cart_items WHERE user_id = ?", (user_id,))

    def _order(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Order:
        item_rows = conn.execute(
            "SELECT * FROM order_items WHERE order_id = ? ORDER BY rowid", (row["id"],)
        ).fetchall()
        items = [
            OrderItem(
                id=i["id"],
                order_id=i["order_id"],
                product_ref=i["product_ref"],
                product_name=i["product_name"],
                quantity=i["quantity"],
                unit_price=i["unit_price"],
                total_price=i["total_price"],
                customization=_load(i["customization"]),
            )
            for i in item_rows
        ]
        address = row["shipping_address"]
        return Order(
            id=row["id"],
            user_id=row["user_id"],
            items=items,
            total_amount=row["total_amount"],
            currency=row["currency"],
            status=row["status"],
            payment_status=row["payment_status"],
            shipping_address=ShippingAddress.model_validate_json(address) if address else None,
            tracking_number=row["tracking_number"],
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_orders(self, user_id: str) -> List[Order]:
        with self._transaction("list orders") as conn:
            rows = conn.execute(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
            return [self._order(conn, row) for row in rows]

    def get_order(self, order_id: str, user_id: str) -> Optional[Order]:
        with self._transaction("get order") as conn:
            row = conn.execute(
                "SELECT * FROM orders WHERE id = ? AND user_id = ?", (order_id, user_id)
            ).fetchone()
            return self._order(conn, row) if row else None

    def update_order(self, order: Order) -> bool:
        """Persist status, payment status, tracking number and notes."""
        with self._transaction("update order") as conn:
            cursor = conn.execute(
                """
                UPDATE orders
                SET status = ?, payment_status = ?, tracking_number = ?, notes = ?, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    order.status.value,
                    order.payment_status.value,
                    order.tracking_number,
                    order.notes,
                    order.updated_at.isoformat(),
                    order.id,
                    order.user_id,
                ),
            )
            return cursor.rowcount > 0
