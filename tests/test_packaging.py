"""
Tests for the packaging planner and step-price lookup.
"""
from decimal import Decimal

import pytest

from parts_store.core.exceptions import PackingInfeasibleError
from parts_store.modules.shipping import (
    CarrierFormat,
    CarrierProfile,
    PackagingPlanner,
    PackingItem,
    PriceStep,
    lookup_step_price,
)


def make_carrier(max_weight=5.0, max_side=100.0, max_sum=200.0, carrier_id="GLS"):
    fmt = CarrierFormat(
        name="standard",
        max_weight_kg=max_weight,
        max_side_cm=max_side,
        max_sum_of_sides_cm=max_sum,
        price_steps=(PriceStep(max_weight, Decimal("9.90")),),
    )
    carrier = CarrierProfile(
        carrier_id=carrier_id,
        name=carrier_id,
        max_weight_kg=max_weight,
        max_side_cm=max_side,
        max_sum_of_sides_cm=max_sum,
        formats=(fmt,),
    )
    return carrier, fmt


def item(item_id, weight, h=20.0, w=20.0, d=20.0, quantity=1):
    return PackingItem(item_id=item_id, weight_kg=weight, height_cm=h, width_cm=w, depth_cm=d, quantity=quantity)


def parcel_contents(plan):
    return [[(i.item_id, i.quantity) for i in parcel.items] for parcel in plan.parcels]


class TestPackagingPlanner:
    """First-fit-descending packing."""

    def test_three_two_kilo_units_under_five_kilo_ceiling(self):
        carrier, fmt = make_carrier(max_weight=5.0)
        plan = PackagingPlanner().plan([item("A", 2.0, quantity=3)], carrier, fmt)

        assert plan.parcel_count == 2
        assert [p.weight_kg for p in plan.parcels] == [4.0, 2.0]
        assert parcel_contents(plan) == [[("A", 2)], [("A", 1)]]

    def test_heaviest_units_packed_first(self):
        carrier, fmt = make_carrier(max_weight=5.0)
        items = [item("light", 1.0), item("heavy", 4.0), item("mid", 3.0)]

        plan = PackagingPlanner().plan(items, carrier, fmt)

        # heavy(4) + light(1) fill parcel 1 exactly, mid(3) opens parcel 2
        assert parcel_contents(plan) == [[("heavy", 1), ("light", 1)], [("mid", 1)]]
        assert plan.parcels[0].weight_kg == 5.0

    def test_equal_weights_keep_input_order(self):
        carrier, fmt = make_carrier(max_weight=2.0)
        items = [item("X", 2.0), item("Y", 2.0), item("Z", 2.0)]

        plan = PackagingPlanner().plan(items, carrier, fmt)

        assert parcel_contents(plan) == [[("X", 1)], [("Y", 1)], [("Z", 1)]]
        assert [p.number for p in plan.parcels] == [1, 2, 3]

    def test_plan_is_deterministic(self):
        carrier, fmt = make_carrier(max_weight=10.0)
        items = [item("A", 3.5, quantity=2), item("B", 1.25, quantity=3), item("C", 6.0)]
        planner = PackagingPlanner()

        first = planner.plan(items, carrier, fmt)
        second = planner.plan(list(items), carrier, fmt)

        assert first == second

    def test_bounding_box_is_per_axis_max(self):
        carrier, fmt = make_carrier(max_weight=30.0, max_side=100.0, max_sum=200.0)
        items = [item("A", 1.0, h=30, w=10, d=5), item("B", 1.0, h=10, w=40, d=5)]

        plan = PackagingPlanner().plan(items, carrier, fmt)

        assert plan.parcel_count == 1
        parcel = plan.parcels[0]
        assert (parcel.height_cm, parcel.width_cm, parcel.depth_cm) == (30, 40, 5)
        assert parcel.longest_side_cm == 40
        assert parcel.sum_of_sides_cm == 75

    def test_growing_box_over_sum_of_sides_opens_new_parcel(self):
        carrier, fmt = make_carrier(max_weight=30.0, max_side=100.0, max_sum=100.0)
        items = [item("A", 1.0, h=60, w=10, d=10), item("B", 1.0, h=10, w=60, d=10)]

        plan = PackagingPlanner().plan(items, carrier, fmt)

        # together: 60 x 60 x 10 = 130 > 100
        assert plan.parcel_count == 2

    def test_fractional_weights_fill_exactly(self):
        carrier, fmt = make_carrier(max_weight=0.3)
        plan = PackagingPlanner().plan([item("A", 0.1, quantity=3)], carrier, fmt)

        assert plan.parcel_count == 1

    def test_missing_dimensions_count_as_zero(self):
        carrier, fmt = make_carrier(max_weight=5.0)
        plan = PackagingPlanner().plan([PackingItem(item_id="A", weight_kg=1.0)], carrier, fmt)

        assert plan.parcels[0].sum_of_sides_cm == 0

    def test_zero_quantity_lines_are_skipped(self):
        carrier, fmt = make_carrier(max_weight=5.0)
        plan = PackagingPlanner().plan([item("A", 1.0, quantity=0), item("B", 1.0)], carrier, fmt)

        assert parcel_contents(plan) == [[("B", 1)]]

    def test_overweight_unit_is_infeasible(self):
        carrier, fmt = make_carrier(max_weight=5.0)

        with pytest.raises(PackingInfeasibleError) as exc_info:
            PackagingPlanner().plan([item("A", 1.0), item("anvil", 6.0)], carrier, fmt)

        assert exc_info.value.item_id == "anvil"
        assert exc_info.value.carrier_id == "GLS"
        assert exc_info.value.format_name == "standard"
        assert exc_info.value.code == "PACKING_INFEASIBLE"

    def test_oversized_unit_is_infeasible(self):
        carrier, fmt = make_carrier(max_weight=30.0, max_side=50.0, max_sum=100.0)

        with pytest.raises(PackingInfeasibleError) as exc_info:
            PackagingPlanner().plan([item("pipe", 1.0, h=120, w=5, d=5)], carrier, fmt)

        assert exc_info.value.item_id == "pipe"
        assert "side" in exc_info.value.message

    def test_total_weight(self):
        carrier, fmt = make_carrier(max_weight=5.0)
        plan = PackagingPlanner().plan([item("A", 2.0, quantity=3)], carrier, fmt)

        assert plan.total_weight_kg == 6.0


class TestStepPriceLookup:
    """First step whose ceiling is >= weight."""

    STEPS = (
        PriceStep(3, Decimal("6.90")),
        PriceStep(5, Decimal("7.90")),
        PriceStep(10, Decimal("9.90")),
    )

    def test_weight_below_first_ceiling(self):
        assert lookup_step_price(self.STEPS, 0.5) == Decimal("6.90")

    def test_weight_on_ceiling_uses_that_step(self):
        assert lookup_step_price(self.STEPS, 3) == Decimal("6.90")
        assert lookup_step_price(self.STEPS, 5) == Decimal("7.90")

    def test_weight_just_over_ceiling_uses_next_step(self):
        assert lookup_step_price(self.STEPS, 3.01) == Decimal("7.90")

    def test_weight_beyond_last_step(self):
        assert lookup_step_price(self.STEPS, 10.5) is None

    def test_float_sum_on_ceiling(self):
        # 0.1 + 0.2 is 0.30000000000000004
        steps = (PriceStep(0.3, Decimal("1.00")), PriceStep(1, Decimal("2.00")))
        assert lookup_step_price(steps, 0.1 + 0.2) == Decimal("1.00")
