"""Parts Store: last-unit stock reservations and multi-carrier shipping quotes."""

__version__ = "1.0.0"
