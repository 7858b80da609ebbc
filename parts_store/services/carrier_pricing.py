"""
Carrier Pricing Table v1.0.0

Process-wide cache of the carrier pricing document.

- Newest active carrier_configs row wins
- Parsed snapshot cached for CARRIER_CONFIG_CACHE_TTL_SECONDS (default 60s)
- Reload builds a complete new snapshot, then swaps one reference;
  readers never see a half-built table and never wait on a reload
- Storage outage or malformed document -> bundled default document
  (or the last good stored snapshot, if one was loaded before)
- Bundled default is parsed at construction; a broken package fails at boot
- store() commits before invalidating; a reload that overlapped an
  invalidate() returns its result but does not cache it

Usage:
    profiles = await carrier_pricing_table.profiles()
    carrier_pricing_table.invalidate()  # next read goes to storage
"""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.core.config import settings
from parts_store.core.database import get_db_session
from parts_store.core.exceptions import ConfigUnavailableError
from parts_store.models.carrier_config import CarrierConfig
from parts_store.modules.shipping.profiles import (
    CarrierProfile,
    PricingSnapshot,
    parse_pricing_document,
)

logger = logging.getLogger(__name__)


class CarrierPricingTable:
    """
    TTL cache over the stored carrier pricing document.

    The cached state is a single (snapshot, loaded_at) tuple. Concurrent
    reloads may each fetch once; the last assignment wins and both
    snapshots are complete. invalidate() bumps a generation counter so a
    reload that started before it never repopulates the cache.
    """

    def __init__(
        self,
        cache_ttl: int = settings.CARRIER_CONFIG_CACHE_TTL_SECONDS,
        default_path: str = settings.CARRIER_CONFIG_DEFAULT_PATH,
        session_factory: Callable = get_db_session,
        clock: Callable[[], float] = time.time,
    ):
        self._cache_ttl = cache_ttl  # seconds
        self._default_path = default_path
        self._session_factory = session_factory
        self._clock = clock
        self._cached: Optional[Tuple[PricingSnapshot, float]] = None
        self._generation = 0
        self._default_snapshot = self._load_default()

    @property
    def is_stale(self) -> bool:
        cached = self._cached
        return cached is None or self._clock() - cached[1] > self._cache_ttl

    async def snapshot(self) -> PricingSnapshot:
        """Current snapshot, reloading first if the cache is stale."""
        cached = self._cached
        if cached is not None and self._clock() - cached[1] <= self._cache_ttl:
            return cached[0]

        generation = self._generation
        snapshot = await self._reload(previous=cached[0] if cached else None)
        if generation == self._generation:
            self._cached = (snapshot, self._clock())
        return snapshot

    async def profiles(self) -> Tuple[CarrierProfile, ...]:
        """Carrier profiles in declaration order."""
        snapshot = await self.snapshot()
        return snapshot.profiles

    def invalidate(self) -> None:
        """Force the next read to bypass the cache."""
        self._generation += 1
        self._cached = None

    async def _reload(self, previous: Optional[PricingSnapshot]) -> PricingSnapshot:
        try:
            snapshot = await self._load_stored()
        except ConfigUnavailableError as e:
            if previous is not None and not previous.is_default:
                logger.error(f"Carrier pricing reload failed, keeping version {previous.version}: {e.message}")
                return previous
            logger.error(f"Carrier pricing unavailable, using bundled default: {e.message}")
            return self.default_snapshot()

        if snapshot is None:
            logger.info("No active carrier pricing document stored, using bundled default")
            return self.default_snapshot()

        logger.debug(
            f"Carrier pricing loaded: version {snapshot.version}, "
            f"{len(snapshot.profiles)} carriers"
        )
        return snapshot

    async def _load_stored(self) -> Optional[PricingSnapshot]:
        """
        Read and parse the newest active document.

        Raises:
            ConfigUnavailableError: storage unreachable or document malformed
        """
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CarrierConfig.config)
                    .where(CarrierConfig.is_active == True)  # noqa: E712
                    .order_by(CarrierConfig.updated_at.desc(), CarrierConfig.id.desc())
                    .limit(1)
                )
                raw = result.scalar_one_or_none()
        except Exception as e:
            raise ConfigUnavailableError(
                f"Carrier pricing storage unreachable: {type(e).__name__}: {e}",
                details={"source": "database"},
            ) from e

        if raw is None:
            return None
        return parse_pricing_document(raw, source="database")

    def _load_default(self) -> PricingSnapshot:
        """
        Parse the bundled default document.

        Raises:
            OSError: the file is missing
            ConfigUnavailableError: the file does not validate
        """
        with open(self._default_path, encoding="utf-8") as f:
            snapshot = parse_pricing_document(f.read(), source="default")
        logger.debug(f"Bundled carrier pricing loaded from {self._default_path}: version {snapshot.version}")
        return snapshot

    def default_snapshot(self) -> PricingSnapshot:
        """The bundled default document."""
        return self._default_snapshot

    async def store(self, document: Dict[str, Any], db: AsyncSession) -> PricingSnapshot:
        """
        Validate and persist a new active pricing document.

        Older documents are deactivated, not deleted. Commits the session,
        then invalidates the cache so the next read sees the new document.

        Raises:
            ConfigUnavailableError: the document does not validate
        """
        snapshot = parse_pricing_document(document, source="database")

        await db.execute(
            update(CarrierConfig)
            .where(CarrierConfig.is_active == True)  # noqa: E712
            .values(is_active=False)
        )
        db.add(CarrierConfig(config=json.dumps(document), is_active=True))
        await db.commit()

        self.invalidate()
        logger.info(f"Carrier pricing document stored: version {snapshot.version}")
        return snapshot

    async def describe(self) -> Dict[str, Any]:
        """Active document plus where it came from."""
        snapshot = await self.snapshot()
        return {
            "version": snapshot.version,
            "is_default": snapshot.is_default,
            "loaded_at": snapshot.loaded_at.isoformat(),
            "carriers": [profile.carrier_id for profile in snapshot.profiles],
            "config": snapshot.document,
        }


# Global pricing table instance
carrier_pricing_table = CarrierPricingTable()
