"""
Application services for placement, fulfillment, payouts, stock and refunds.
"""
