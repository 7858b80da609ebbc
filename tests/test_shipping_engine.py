"""
Tests for the shipping cost engine and shipping settings.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from parts_store.core.config import settings
from parts_store.core.exceptions import NoCarrierAvailableError, ShippingError
from parts_store.modules.shipping import parse_pricing_document
from parts_store.services.shipping_engine import (
    FIXED_CARRIER_ID,
    ShippingCostEngine,
    ShippingLine,
    apply_markup,
)
from parts_store.services.shipping_settings import ShippingSettingsService, ShippingTerms


def default_profiles():
    with open(settings.CARRIER_CONFIG_DEFAULT_PATH, encoding="utf-8") as f:
        return parse_pricing_document(f.read(), source="default").profiles


def carrier_doc(carrier_id, price_steps, max_weight=30, max_side=100, max_sum=200):
    return {
        "max_weight_kg": max_weight,
        "max_side_cm": max_side,
        "max_sum_of_sides_cm": max_sum,
        "formats": {
            "standard": {
                "price_steps": [{"max_weight_kg": w, "price": p} for w, p in price_steps],
            },
        },
    }


def profiles_from(carriers):
    return parse_pricing_document({"version": 1, "carriers": carriers}).profiles


def make_engine(profiles=None, terms=None):
    pricing_table = MagicMock()
    pricing_table.profiles = AsyncMock(return_value=profiles if profiles is not None else default_profiles())
    settings_service = MagicMock()
    settings_service.get_terms = AsyncMock(return_value=terms or ShippingTerms())
    return ShippingCostEngine(pricing_table, settings_service)


def line(item_id=1, quantity=1, weight=1.0, h=10.0, w=10.0, d=10.0):
    return ShippingLine(
        item_id=item_id,
        quantity=quantity,
        weight_kg=weight,
        height_cm=h,
        width_cm=w,
        depth_cm=d,
        name=f"Part {item_id}",
    )


class TestCarrierSelection:
    """Cheapest feasible carrier/format wins."""

    @pytest.mark.asyncio
    async def test_cheapest_carrier_selected(self):
        engine = make_engine()

        quote = await engine.quote([line(weight=1.0)], Decimal("20.00"))

        # GLS 6.90 < POSTE standard 7.50 < BRT 8.50
        assert quote.carrier_id == "GLS"
        assert quote.format_name == "standard"
        assert quote.base_cost == Decimal("6.90")
        assert quote.final_cost == Decimal("6.90")
        assert quote.parcel_count == 1

    @pytest.mark.asyncio
    async def test_oversized_for_one_carrier_falls_to_next(self):
        engine = make_engine()

        # 120cm side: too long for GLS (100) and POSTE standard (50)
        quote = await engine.quote([line(weight=2.0, h=120, w=10, d=10)], Decimal("20.00"))

        # BRT 8.50 beats POSTE non_standard 11.00
        assert quote.carrier_id == "BRT"
        assert quote.base_cost == Decimal("8.50")

    @pytest.mark.asyncio
    async def test_tie_goes_to_first_declared_carrier(self):
        profiles = profiles_from({
            "FIRST": carrier_doc("FIRST", [(10, "5.00")]),
            "SECOND": carrier_doc("SECOND", [(10, "5.00")]),
        })
        engine = make_engine(profiles=profiles)

        quote = await engine.quote([line()], Decimal("10.00"))

        assert quote.carrier_id == "FIRST"

    @pytest.mark.asyncio
    async def test_multi_parcel_plan_priced_per_parcel(self):
        profiles = profiles_from({
            "SMALL": carrier_doc("SMALL", [(2, "4.00"), (5, "6.00")], max_weight=5),
        })
        engine = make_engine(profiles=profiles)

        quote = await engine.quote([line(weight=2.0, h=20, w=20, d=20, quantity=3)], Decimal("10.00"))

        assert quote.parcel_count == 2
        assert [p.cost for p in quote.parcels] == [Decimal("6.00"), Decimal("4.00")]
        assert quote.base_cost == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_splitting_can_beat_a_bigger_carrier(self):
        profiles = profiles_from({
            "BIG": carrier_doc("BIG", [(50, "30.00")], max_weight=50),
            "SMALL": carrier_doc("SMALL", [(5, "6.00")], max_weight=5),
        })
        engine = make_engine(profiles=profiles)

        quote = await engine.quote([line(weight=2.0, quantity=3)], Decimal("10.00"))

        assert quote.carrier_id == "SMALL"
        assert quote.base_cost == Decimal("12.00")

    @pytest.mark.asyncio
    async def test_step_table_shorter_than_ceiling_skips_candidate(self):
        profiles = profiles_from({
            "CHEAP": carrier_doc("CHEAP", [(2, "1.00")], max_weight=30),
            "FALLBACK": carrier_doc("FALLBACK", [(30, "9.00")], max_weight=30),
        })
        engine = make_engine(profiles=profiles)

        quote = await engine.quote([line(weight=8.0)], Decimal("10.00"))

        assert quote.carrier_id == "FALLBACK"

    @pytest.mark.asyncio
    async def test_no_carrier_available_names_item(self):
        engine = make_engine()

        with pytest.raises(NoCarrierAvailableError) as exc_info:
            await engine.quote([line(item_id=1), line(item_id=42, weight=75.0)], Decimal("500.00"))

        assert exc_info.value.item_id == 42
        assert exc_info.value.code == "NO_CARRIER_AVAILABLE"

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self):
        engine = make_engine()

        with pytest.raises(ShippingError) as exc_info:
            await engine.quote([], Decimal("0"))

        assert exc_info.value.code == "EMPTY_CART"

    @pytest.mark.asyncio
    async def test_missing_dimensions_without_fixed_price_are_packed(self):
        engine = make_engine()

        quote = await engine.quote([ShippingLine(item_id=1, quantity=1, weight_kg=1.0)], Decimal("5.00"))

        assert quote.carrier_id == "GLS"


class TestMarkupAndFreeShipping:
    """Markup and the free-shipping override."""

    def test_apply_markup_rounds_half_up(self):
        assert apply_markup(Decimal("6.90"), Decimal("10")) == Decimal("7.59")
        assert apply_markup(Decimal("0.05"), Decimal("50")) == Decimal("0.08")

    @pytest.mark.asyncio
    async def test_markup_applied_to_final_cost(self):
        engine = make_engine(terms=ShippingTerms(markup_percent=Decimal("10")))

        quote = await engine.quote([line()], Decimal("20.00"))

        assert quote.base_cost == Decimal("6.90")
        assert quote.final_cost == Decimal("7.59")
        assert quote.markup_percent == Decimal("10")

    @pytest.mark.asyncio
    async def test_free_shipping_at_threshold_keeps_base_cost(self):
        terms = ShippingTerms(markup_percent=Decimal("10"), free_shipping_threshold=Decimal("50.00"))
        engine = make_engine(terms=terms)

        quote = await engine.quote([line()], Decimal("50.00"))

        assert quote.is_free_shipping is True
        assert quote.final_cost == Decimal("0")
        assert quote.base_cost == Decimal("6.90")
        assert quote.carrier_id == "GLS"
        assert quote.parcel_count == 1
        assert quote.free_shipping_threshold == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_below_threshold_pays(self):
        engine = make_engine(terms=ShippingTerms(free_shipping_threshold=Decimal("50.00")))

        quote = await engine.quote([line()], Decimal("49.99"))

        assert quote.is_free_shipping is False
        assert quote.final_cost == Decimal("6.90")

    @pytest.mark.asyncio
    async def test_zero_threshold_disables_free_shipping(self):
        engine = make_engine(terms=ShippingTerms(free_shipping_threshold=Decimal("0")))

        quote = await engine.quote([line()], Decimal("100.00"))

        assert quote.is_free_shipping is False
        assert quote.free_shipping_threshold is None

    @pytest.mark.asyncio
    async def test_fixed_price_when_dimensions_missing(self):
        terms = ShippingTerms(markup_percent=Decimal("10"), fixed_shipping_price=Decimal("5.00"))
        engine = make_engine(terms=terms)
        lines = [line(item_id=1), ShippingLine(item_id=2, quantity=2, weight_kg=None)]

        quote = await engine.quote(lines, Decimal("30.00"))

        assert quote.carrier_id == FIXED_CARRIER_ID
        assert quote.final_cost == Decimal("5.00")
        assert quote.markup_percent == Decimal("0")
        assert quote.parcel_count == 1
        assert [(i.item_id, i.quantity) for i in quote.parcels[0].items] == [(1, 1), (2, 2)]
        engine.pricing_table.profiles.assert_not_called()

    @pytest.mark.asyncio
    async def test_fixed_price_still_free_over_threshold(self):
        terms = ShippingTerms(fixed_shipping_price=Decimal("5.00"), free_shipping_threshold=Decimal("25.00"))
        engine = make_engine(terms=terms)

        quote = await engine.quote([ShippingLine(item_id=1, quantity=1)], Decimal("30.00"))

        assert quote.is_free_shipping is True
        assert quote.final_cost == Decimal("0")
        assert quote.base_cost == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_complete_dimensions_ignore_fixed_price(self):
        engine = make_engine(terms=ShippingTerms(fixed_shipping_price=Decimal("5.00")))

        quote = await engine.quote([line()], Decimal("20.00"))

        assert quote.carrier_id == "GLS"


class TestShippingSettingsService:
    """Terms from the shipping_settings table with config fallback."""

    @pytest.mark.asyncio
    async def test_row_values_used(self, mock_db):
        row = MagicMock()
        row.markup_percent = Decimal("12.50")
        row.free_shipping_threshold = Decimal("79")
        row.fixed_shipping_price = None
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = row
        mock_db.execute.return_value = mock_result

        terms = await ShippingSettingsService(mock_db).get_terms()

        assert terms.markup_percent == Decimal("12.50")
        assert terms.free_shipping_threshold == Decimal("79.00")
        assert terms.fixed_shipping_price is None

    @pytest.mark.asyncio
    async def test_no_row_falls_back_to_config(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = mock_result

        with patch("parts_store.services.shipping_settings.settings") as mock_settings:
            mock_settings.SHIPPING_MARKUP_PERCENT = Decimal("5")
            mock_settings.SHIPPING_FREE_THRESHOLD = Decimal("99")
            mock_settings.SHIPPING_FIXED_PRICE = None
            terms = await ShippingSettingsService(mock_db).get_terms()

        assert terms.markup_percent == Decimal("5")
        assert terms.free_shipping_threshold == Decimal("99.00")

    @pytest.mark.asyncio
    async def test_read_failure_falls_back_to_config(self, mock_db):
        mock_db.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        terms = await ShippingSettingsService(mock_db).get_terms()

        assert terms.markup_percent == Decimal(str(settings.SHIPPING_MARKUP_PERCENT))

    @pytest.mark.asyncio
    async def test_terms_cached_per_service(self, mock_db):
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = mock_result
        service = ShippingSettingsService(mock_db)

        await service.get_terms()
        await service.get_terms()

        assert mock_db.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_free_threshold_none_when_disabled(self, mock_db):
        row = MagicMock()
        row.markup_percent = Decimal("0")
        row.free_shipping_threshold = Decimal("0")
        row.fixed_shipping_price = None
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = row
        mock_db.execute.return_value = mock_result

        assert await ShippingSettingsService(mock_db).get_free_shipping_threshold() is None


class TestQuoteSerialization:

    @pytest.mark.asyncio
    async def test_to_dict_keeps_money_as_strings(self):
        engine = make_engine()

        quote = await engine.quote([line(weight=1.5, quantity=2)], Decimal("20.00"))
        data = quote.to_dict()

        assert data["base_cost"] == "6.90"
        assert data["free_shipping_threshold"] is None
        assert data["parcels"][0]["cost"] == "6.90"
        assert quote.total_weight_kg == 3.0
