"""
Domain layer for order fulfillment and vendor payouts.
"""

__all__ = ["events", "exceptions", "order", "payout"]
