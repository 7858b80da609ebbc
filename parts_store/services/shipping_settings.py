"""
Shipping Settings Service

Shop-wide shipping terms (markup, free-shipping threshold, fixed fallback
price) from the shipping_settings table, falling back to config values.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from parts_store.core.config import settings
from parts_store.core.utils import round_money
from parts_store.models.carrier_config import ShippingSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShippingTerms:
    markup_percent: Decimal = Decimal("0")
    free_shipping_threshold: Optional[Decimal] = None
    fixed_shipping_price: Optional[Decimal] = None

    @property
    def free_shipping_enabled(self) -> bool:
        return self.free_shipping_threshold is not None and self.free_shipping_threshold > 0

    @property
    def fixed_price_enabled(self) -> bool:
        return self.fixed_shipping_price is not None and self.fixed_shipping_price > 0

    def qualifies_for_free_shipping(self, subtotal: Decimal) -> bool:
        return self.free_shipping_enabled and subtotal >= self.free_shipping_threshold


def _optional_money(value) -> Optional[Decimal]:
    return round_money(value) if value is not None else None


def terms_from_config() -> ShippingTerms:
    return ShippingTerms(
        markup_percent=Decimal(str(settings.SHIPPING_MARKUP_PERCENT)),
        free_shipping_threshold=_optional_money(settings.SHIPPING_FREE_THRESHOLD),
        fixed_shipping_price=_optional_money(settings.SHIPPING_FIXED_PRICE),
    )


class ShippingSettingsService:
    """
    Service for reading shipping terms from the database.

    Falls back to config.py values when no active row exists or the
    read fails.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._terms: Optional[ShippingTerms] = None
        self.source: Optional[str] = None  # "database" or "config" after get_terms()

    async def get_terms(self) -> ShippingTerms:
        if self._terms is not None:
            return self._terms

        try:
            result = await self.db.execute(
                select(ShippingSettings)
                .where(ShippingSettings.is_active == True)  # noqa: E712
                .order_by(ShippingSettings.updated_at.desc(), ShippingSettings.id.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        except Exception as e:
            logger.warning(f"Error fetching shipping settings, using config values: {e}")
            self.source = "config"
            return terms_from_config()

        if row is None:
            self.source = "config"
            self._terms = terms_from_config()
        else:
            self.source = "database"
            self._terms = ShippingTerms(
                markup_percent=Decimal(str(row.markup_percent or 0)),
                free_shipping_threshold=_optional_money(row.free_shipping_threshold),
                fixed_shipping_price=_optional_money(row.fixed_shipping_price),
            )
        return self._terms

    async def get_free_shipping_threshold(self) -> Optional[Decimal]:
        """Threshold if free shipping is enabled, else None."""
        terms = await self.get_terms()
        return terms.free_shipping_threshold if terms.free_shipping_enabled else None

    async def save_terms(self, terms: ShippingTerms) -> ShippingTerms:
        """
        Store `terms` as the active row. Older rows are deactivated, not
        deleted. The caller commits.
        """
        await self.db.execute(
            update(ShippingSettings)
            .where(ShippingSettings.is_active == True)  # noqa: E712
            .values(is_active=False)
        )
        self.db.add(ShippingSettings(
            markup_percent=terms.markup_percent,
            free_shipping_threshold=terms.free_shipping_threshold,
            fixed_shipping_price=terms.fixed_shipping_price,
            is_active=True,
        ))
        await self.db.flush()

        self._terms = terms
        self.source = "database"
        logger.info(
            f"Shipping settings saved: markup {terms.markup_percent}%, "
            f"free threshold {terms.free_shipping_threshold}, fixed price {terms.fixed_shipping_price}"
        )
        return terms
