"""
Carrier Profiles v1.0.0

Immutable carrier/format pricing rules, parsed from the carrier pricing
document. A parsed document is a PricingSnapshot; snapshots are never
mutated, the pricing table swaps in a new one on reload.

Document shape (carriers keyed by id, declaration order is significant):

    {
      "version": 3,
      "carriers": {
        "GLS": {
          "name": "GLS",
          "max_weight_kg": 30, "max_side_cm": 100, "max_sum_of_sides_cm": 200,
          "formats": {
            "standard": {"price_steps": [{"max_weight_kg": 3, "price": "6.90"}, ...]}
          }
        }
      }
    }

Format-level ceilings override the carrier-level ones.
"""
import json
from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from operator import attrgetter
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from parts_store.core.exceptions import ConfigUnavailableError
from parts_store.core.utils import utcnow


# =============================================================================
# Immutable profile types
# =============================================================================

@dataclass(frozen=True)
class PriceStep:
    """Price for any parcel weighing up to max_weight_kg."""
    max_weight_kg: float
    price: Decimal


@dataclass(frozen=True)
class CarrierFormat:
    """A carrier size class with its own ceilings and step table."""
    name: str
    max_weight_kg: float
    max_side_cm: float
    max_sum_of_sides_cm: float
    price_steps: Tuple[PriceStep, ...]

    def price_for_weight(self, weight_kg: float) -> Optional[Decimal]:
        return lookup_step_price(self.price_steps, weight_kg)

    def accepts(self, weight_kg: float, longest_side_cm: float, sum_of_sides_cm: float) -> bool:
        return (
            weight_kg <= self.max_weight_kg + WEIGHT_TOLERANCE_KG
            and longest_side_cm <= self.max_side_cm
            and sum_of_sides_cm <= self.max_sum_of_sides_cm
        )


@dataclass(frozen=True)
class CarrierProfile:
    carrier_id: str
    name: str
    max_weight_kg: Optional[float]
    max_side_cm: Optional[float]
    max_sum_of_sides_cm: Optional[float]
    formats: Tuple[CarrierFormat, ...]

    def get_format(self, name: str) -> Optional[CarrierFormat]:
        for fmt in self.formats:
            if fmt.name == name:
                return fmt
        return None


@dataclass(frozen=True)
class PricingSnapshot:
    """One fully parsed pricing document."""
    version: str
    profiles: Tuple[CarrierProfile, ...]
    source: str  # "database" or "default"
    document: Dict[str, Any] = field(compare=False, repr=False)
    loaded_at: datetime = field(default_factory=utcnow, compare=False)

    @property
    def is_default(self) -> bool:
        return self.source == "default"


# Float sums of weights (0.1 + 0.2) must not reject an exact fit
WEIGHT_TOLERANCE_KG = 1e-9


def lookup_step_price(steps: Tuple[PriceStep, ...], weight_kg: float) -> Optional[Decimal]:
    """
    Price of the first step whose ceiling is >= weight_kg.

    Steps are strictly increasing by max_weight_kg (enforced at parse time),
    so this is a binary search. Returns None when the weight is above the
    last step.
    """
    index = bisect_left(steps, weight_kg - WEIGHT_TOLERANCE_KG, key=attrgetter("max_weight_kg"))
    if index >= len(steps):
        return None
    return steps[index].price


# =============================================================================
# Document schema (validation only)
# =============================================================================

class PriceStepDocument(BaseModel):
    max_weight_kg: float = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)


class FormatDocument(BaseModel):
    max_weight_kg: Optional[float] = Field(None, gt=0)
    max_side_cm: Optional[float] = Field(None, gt=0)
    max_sum_of_sides_cm: Optional[float] = Field(None, gt=0)
    price_steps: List[PriceStepDocument] = Field(..., min_length=1)

    @field_validator("price_steps")
    @classmethod
    def validate_strictly_increasing(cls, v):
        ceilings = [step.max_weight_kg for step in v]
        if any(b <= a for a, b in zip(ceilings, ceilings[1:])):
            raise ValueError("price_steps must be strictly increasing by max_weight_kg")
        return v


class CarrierDocument(BaseModel):
    name: Optional[str] = None
    max_weight_kg: Optional[float] = Field(None, gt=0)
    max_side_cm: Optional[float] = Field(None, gt=0)
    max_sum_of_sides_cm: Optional[float] = Field(None, gt=0)
    formats: Dict[str, FormatDocument] = Field(..., min_length=1)


class PricingDocument(BaseModel):
    version: Union[int, str] = 1
    carriers: Dict[str, CarrierDocument] = Field(..., min_length=1)


# =============================================================================
# Parsing
# =============================================================================

def _resolve_ceiling(carrier_id: str, format_name: str, attr: str, fmt: FormatDocument, carrier: CarrierDocument) -> float:
    value = getattr(fmt, attr)
    if value is None:
        value = getattr(carrier, attr)
    if value is None:
        raise ConfigUnavailableError(
            f"Carrier {carrier_id} format {format_name} has no {attr}",
            details={"carrier_id": carrier_id, "format_name": format_name, "field": attr},
        )
    return value


def build_profiles(document: PricingDocument) -> Tuple[CarrierProfile, ...]:
    """Turn a validated document into immutable profiles, preserving declaration order."""
    profiles = []
    for carrier_id, carrier in document.carriers.items():
        formats = []
        for format_name, fmt in carrier.formats.items():
            formats.append(CarrierFormat(
                name=format_name,
                max_weight_kg=_resolve_ceiling(carrier_id, format_name, "max_weight_kg", fmt, carrier),
                max_side_cm=_resolve_ceiling(carrier_id, format_name, "max_side_cm", fmt, carrier),
                max_sum_of_sides_cm=_resolve_ceiling(carrier_id, format_name, "max_sum_of_sides_cm", fmt, carrier),
                price_steps=tuple(
                    PriceStep(max_weight_kg=step.max_weight_kg, price=step.price)
                    for step in fmt.price_steps
                ),
            ))
        profiles.append(CarrierProfile(
            carrier_id=carrier_id,
            name=carrier.name or carrier_id,
            max_weight_kg=carrier.max_weight_kg,
            max_side_cm=carrier.max_side_cm,
            max_sum_of_sides_cm=carrier.max_sum_of_sides_cm,
            formats=tuple(formats),
        ))
    return tuple(profiles)


def parse_pricing_document(raw: Union[str, bytes, Dict[str, Any]], source: str = "database") -> PricingSnapshot:
    """
    Parse and validate a pricing document.

    Raises:
        ConfigUnavailableError: the document is not JSON or does not validate
    """
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        document = PricingDocument.model_validate(data)
    except (ValueError, TypeError, ValidationError) as e:
        raise ConfigUnavailableError(
            f"Malformed carrier pricing document: {e}",
            details={"source": source},
        ) from e

    return PricingSnapshot(
        version=str(document.version),
        profiles=build_profiles(document),
        source=source,
        document=data,
    )
