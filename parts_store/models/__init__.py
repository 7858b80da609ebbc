from parts_store.models.product import Product
from parts_store.models.cart import CartItem
from parts_store.models.stock_reservation import StockReservation
from parts_store.models.carrier_config import CarrierConfig, ShippingSettings
