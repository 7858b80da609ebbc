"""
Parts Store Exception Hierarchy

Structured exception classes for reservations, shipping and storage.
All exceptions include code, message, and details for logging and debugging.

Exception Hierarchy:
    PartsStoreError
    ├── ReservationError
    │   └── ReservationBusyError
    ├── ShippingError
    │   ├── PackingInfeasibleError
    │   └── NoCarrierAvailableError
    ├── CarrierConfigError
    │   └── ConfigUnavailableError
    ├── StorageError
    │   ├── TransientStorageError
    │   └── UnsupportedStorageError
    └── InventoryError
        ├── ProductNotFoundError
        └── StockError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class PartsStoreError(Exception):
    """
    Base exception for all Parts Store custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "PARTS_STORE_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# RESERVATION ERRORS
# =============================================================================

class ReservationError(PartsStoreError):
    """Base exception for stock reservation errors."""
    default_code = "RESERVATION_ERROR"
    default_severity = "P2"


class ReservationBusyError(ReservationError):
    """
    Another holder has an unexpired lease on the last unit.

    Recoverable: the caller surfaces "temporarily unavailable, try later".
    """
    default_code = "RESERVATION_BUSY"
    default_severity = "P3"

    def __init__(
        self,
        message: str = "Item is temporarily reserved by another customer. Try again later.",
        item_id: Optional[int] = None,
        holder_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "item_id": item_id,
            "holder_id": holder_id,
        })
        self.item_id = item_id
        self.holder_id = holder_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(PartsStoreError):
    """Base exception for shipping errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P2"


class PackingInfeasibleError(ShippingError):
    """A single unit exceeds a carrier format's weight or size ceiling."""
    default_code = "PACKING_INFEASIBLE"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        item_id: Optional[Any] = None,
        carrier_id: Optional[str] = None,
        format_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "item_id": item_id,
            "carrier_id": carrier_id,
            "format_name": format_name,
        })
        self.item_id = item_id
        self.carrier_id = carrier_id
        self.format_name = format_name
        super().__init__(message, details=details, **kwargs)


class NoCarrierAvailableError(ShippingError):
    """No carrier/format combination can ship the cart. Blocks checkout."""
    default_code = "NO_CARRIER_AVAILABLE"
    default_severity = "P2"

    def __init__(
        self,
        message: str = "No carrier can ship this cart",
        item_id: Optional[Any] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"item_id": item_id})
        self.item_id = item_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# CARRIER CONFIGURATION ERRORS
# =============================================================================

class CarrierConfigError(PartsStoreError):
    """Base exception for carrier pricing configuration errors."""
    default_code = "CARRIER_CONFIG_ERROR"
    default_severity = "P2"


class ConfigUnavailableError(CarrierConfigError):
    """
    Pricing source unreachable or malformed.

    Never propagated to shipping callers; the pricing table falls back
    to the bundled default document.
    """
    default_code = "CONFIG_UNAVAILABLE"
    default_severity = "P2"


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class StorageError(PartsStoreError):
    """Base exception for persistence failures."""
    default_code = "STORAGE_ERROR"
    default_severity = "P1"


class TransientStorageError(StorageError):
    """Storage failed in a way that may succeed on retry. Callers back off and retry."""
    default_code = "STORAGE_TRANSIENT"
    default_severity = "P1"

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"operation": operation})
        self.operation = operation
        super().__init__(message, details=details, **kwargs)


class UnsupportedStorageError(StorageError):
    """The configured database cannot run the conditional reservation upsert. Not retryable."""
    default_code = "STORAGE_UNSUPPORTED"
    default_severity = "P0"

    def __init__(self, dialect: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"dialect": dialect})
        self.dialect = dialect
        super().__init__(
            f"Conditional reservation upsert not supported on {dialect}",
            details=details,
            **kwargs
        )


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(PartsStoreError):
    """Base exception for inventory-related errors."""
    default_code = "INVENTORY_ERROR"
    default_severity = "P2"


class ProductNotFoundError(InventoryError):
    """Product does not exist or is inactive."""
    default_code = "PRODUCT_NOT_FOUND"

    def __init__(self, message: str = "Product not found", item_id: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"item_id": item_id})
        self.item_id = item_id
        super().__init__(message, details=details, **kwargs)


class StockError(InventoryError):
    """Requested quantity exceeds stock (out of stock, not contention)."""
    default_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        message: str,
        item_id: Optional[int] = None,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "item_id": item_id,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# EXCEPTION CATALOG
# =============================================================================

EXCEPTION_CATALOG = {
    "RESERVATION_BUSY": {"class": ReservationBusyError, "severity": "P3"},
    "PACKING_INFEASIBLE": {"class": PackingInfeasibleError, "severity": "P3"},
    "NO_CARRIER_AVAILABLE": {"class": NoCarrierAvailableError, "severity": "P2"},
    "CONFIG_UNAVAILABLE": {"class": ConfigUnavailableError, "severity": "P2"},
    "STORAGE_TRANSIENT": {"class": TransientStorageError, "severity": "P1"},
    "STORAGE_UNSUPPORTED": {"class": UnsupportedStorageError, "severity": "P0"},
    "PRODUCT_NOT_FOUND": {"class": ProductNotFoundError, "severity": "P2"},
    "INSUFFICIENT_STOCK": {"class": StockError, "severity": "P2"},
}
