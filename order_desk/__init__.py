"""
                Order Desk

Counter ordering backend: order composition and validation, per-day call
numbers, kitchen progress per dish, and live status for kitchen, payment
and customer displays.
"""

__version__ = "1.0.0"
