"""Selectors for the replenishment kernel (read side)."""

from replenishment_kernel.selectors.order_selector import OrderSelector

__all__ = ["OrderSelector"]
