"""
Stock Reservation Manager

Leases on the last unit of a product (stock == 1). At most one holder may
have an unexpired lease on an item at a time.

Admission is a single conditional upsert against the unique product_id
constraint:

    INSERT ... ON CONFLICT (product_id) DO UPDATE
        SET holder_id = excluded.holder_id, expires_at = excluded.expires_at
        WHERE holder_id = excluded.holder_id OR expires_at <= :now
    RETURNING ...

No row back means another holder has an unexpired lease (Busy).

Sweeps read expired rows, then delete them with the expiry condition
repeated, so a lease refreshed between the read and the delete survives
and concurrent sweeps never report the same lease twice.

Methods do not commit; the caller owns the transaction (request session
or get_db_session()).
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, case, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.core.config import settings
from parts_store.core.exceptions import (
    ProductNotFoundError,
    ReservationBusyError,
    TransientStorageError,
    UnsupportedStorageError,
)
from parts_store.core.utils import as_utc, utcnow
from parts_store.models import Product, StockReservation

logger = logging.getLogger(__name__)

reservations_table = StockReservation.__table__

# Leases expiring within this window count as "expiring soon" in stats
EXPIRING_SOON_WINDOW = timedelta(minutes=5)

_TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


@dataclass(frozen=True)
class Reservation:
    item_id: int
    holder_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())


@dataclass
class SweepResult:
    released_count: int = 0
    released_items: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "released_count": self.released_count,
            "released_items": self.released_items,
        }


@contextmanager
def _storage_operation(operation: str):
    """Translate connection-level database failures into TransientStorageError."""
    try:
        yield
    except _TRANSIENT_ERRORS as e:
        raise TransientStorageError(
            f"Storage unavailable during {operation}: {type(e).__name__}",
            operation=operation,
        ) from e


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def ensure_supported_dialect(dialect: str) -> None:
    """
    Fail fast when the database cannot run the conditional upsert.

    Raises:
        UnsupportedStorageError: dialect is not PostgreSQL or SQLite
    """
    if dialect not in _DIALECT_INSERTS:
        raise UnsupportedStorageError(dialect)


def _dialect_insert(db: AsyncSession):
    """INSERT construct with ON CONFLICT support for the bound dialect."""
    dialect = db.get_bind().dialect.name
    ensure_supported_dialect(dialect)
    return _DIALECT_INSERTS[dialect]


class ReservationManager:
    """
    Create, refresh, query, release and reclaim last-unit leases.

    Usage:
        manager = ReservationManager(db)
        reservation = await manager.try_reserve(product_id, user_id)  # may raise ReservationBusyError
        await manager.release(product_id, user_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl_minutes = ttl_minutes or settings.RESERVATION_TTL_MINUTES
        self._clock = clock

    async def try_reserve(self, item_id: int, holder_id: str) -> Optional[Reservation]:
        """
        Create or refresh `holder_id`'s lease on the last unit of `item_id`.

        Returns the lease, or None when the item's stock is not exactly 1
        (multi-unit items need no lease).

        Raises:
            ProductNotFoundError: unknown item
            ReservationBusyError: another holder has an unexpired lease
            TransientStorageError: storage unavailable, retry with backoff
        """
        now = self._clock()

        with _storage_operation("try_reserve"):
            result = await self.db.execute(select(Product.stock).where(Product.id == item_id))
            stock = result.scalar_one_or_none()

            if stock is None:
                raise ProductNotFoundError(item_id=item_id)
            if stock != 1:
                return None

            expires_at = now + timedelta(minutes=self.ttl_minutes)
            insert = _dialect_insert(self.db)
            stmt = insert(reservations_table).values(
                product_id=item_id,
                holder_id=holder_id,
                created_at=now,
                expires_at=expires_at,
            )
            same_holder = reservations_table.c.holder_id == stmt.excluded.holder_id
            stmt = stmt.on_conflict_do_update(
                index_elements=["product_id"],
                set_={
                    "holder_id": stmt.excluded.holder_id,
                    "created_at": case(
                        (same_holder, reservations_table.c.created_at),
                        else_=stmt.excluded.created_at,
                    ),
                    "expires_at": stmt.excluded.expires_at,
                },
                where=or_(same_holder, reservations_table.c.expires_at <= now),
            ).returning(
                reservations_table.c.product_id,
                reservations_table.c.holder_id,
                reservations_table.c.created_at,
                reservations_table.c.expires_at,
            )

            row = (await self.db.execute(stmt)).first()

        if row is None:
            logger.info(f"Reservation busy: item {item_id} requested by {holder_id}")
            raise ReservationBusyError(item_id=item_id, holder_id=holder_id)

        logger.debug(f"Reservation held: item {item_id} by {holder_id} until {as_utc(row.expires_at).isoformat()}")
        return Reservation(
            item_id=row.product_id,
            holder_id=row.holder_id,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
        )

    async def release(self, item_id: int, holder_id: str) -> bool:
        """Delete `holder_id`'s lease on `item_id`. No-op (False) if there is none."""
        with _storage_operation("release"):
            result = await self.db.execute(
                delete(reservations_table).where(
                    reservations_table.c.product_id == item_id,
                    reservations_table.c.holder_id == holder_id,
                )
            )

        released = result.rowcount > 0
        if released:
            logger.debug(f"Reservation released: item {item_id} by {holder_id}")
        return released

    async def release_holder(self, holder_id: str) -> int:
        """Release every lease held by `holder_id` (e.g. order placed). Returns the count."""
        with _storage_operation("release_holder"):
            result = await self.db.execute(
                delete(reservations_table).where(reservations_table.c.holder_id == holder_id)
            )

        if result.rowcount:
            logger.info(f"Released {result.rowcount} reservations held by {holder_id}")
        return result.rowcount

    async def is_held_by_other(self, item_id: int, excluding_holder_id: str) -> bool:
        """True iff someone other than `excluding_holder_id` has an unexpired lease on `item_id`."""
        now = self._clock()
        with _storage_operation("is_held_by_other"):
            result = await self.db.execute(
                select(reservations_table.c.id).where(
                    reservations_table.c.product_id == item_id,
                    reservations_table.c.holder_id != excluding_holder_id,
                    reservations_table.c.expires_at > now,
                ).limit(1)
            )
        return result.first() is not None

    async def get_reservation(self, item_id: int) -> Optional[Reservation]:
        """Current lease row on `item_id`, expired or not."""
        with _storage_operation("get_reservation"):
            result = await self.db.execute(
                select(
                    reservations_table.c.product_id,
                    reservations_table.c.holder_id,
                    reservations_table.c.created_at,
                    reservations_table.c.expires_at,
                ).where(reservations_table.c.product_id == item_id)
            )
            row = result.first()

        if row is None:
            return None
        return Reservation(
            item_id=row.product_id,
            holder_id=row.holder_id,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
        )

    async def sweep_expired(self) -> SweepResult:
        """
        Delete every lease with expires_at < now.

        Only rows actually removed by this call are reported; a row another
        sweep already deleted, or a lease refreshed since the read, is not.

        Raises:
            TransientStorageError: storage unavailable, retry on next tick
        """
        now = self._clock()

        with _storage_operation("sweep_expired"):
            result = await self.db.execute(
                select(reservations_table.c.id, Product.name)
                .join(Product, Product.id == reservations_table.c.product_id)
                .where(reservations_table.c.expires_at < now)
                .order_by(reservations_table.c.expires_at)
                .with_for_update(skip_locked=True, of=reservations_table)
            )
            candidates = {row.id: row.name for row in result}

            if not candidates:
                logger.debug("No expired reservations to clean up")
                return SweepResult()

            result = await self.db.execute(
                delete(reservations_table)
                .where(
                    reservations_table.c.id.in_(list(candidates)),
                    reservations_table.c.expires_at < now,
                )
                .returning(
                    reservations_table.c.id,
                    reservations_table.c.product_id,
                    reservations_table.c.holder_id,
                    reservations_table.c.expires_at,
                )
            )
            deleted = result.all()

        released_items = [
            {
                "item_id": row.product_id,
                "holder_id": row.holder_id,
                "product_name": candidates.get(row.id),
                "expired_at": as_utc(row.expires_at).isoformat(),
            }
            for row in sorted(deleted, key=lambda r: (as_utc(r.expires_at), r.id))
        ]

        if released_items:
            logger.info(f"Released {len(released_items)} expired reservations")

        return SweepResult(released_count=len(released_items), released_items=released_items)

    async def get_reservation_stats(self) -> Dict[str, int]:
        """Counts for monitoring: total, active, expired, expiring within 5 minutes."""
        now = self._clock()
        expires_at = reservations_table.c.expires_at

        with _storage_operation("get_reservation_stats"):
            result = await self.db.execute(
                select(
                    func.count(reservations_table.c.id),
                    func.coalesce(func.sum(case((expires_at < now, 1), else_=0)), 0),
                    func.coalesce(func.sum(case(
                        (and_(expires_at >= now, expires_at < now + EXPIRING_SOON_WINDOW), 1),
                        else_=0,
                    )), 0),
                )
            )
            total, expired, expiring_soon = result.one()

        return {
            "total_reservations": total,
            "active_reservations": total - expired,
            "expired_reservations": expired,
            "expiring_within_5min": expiring_soon,
        }
