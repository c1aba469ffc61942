"""cartflow: cart, order and activity-log lifecycle for a storefront backend."""

__version__ = "0.1.0"
