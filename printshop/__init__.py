"""Printshop prepaid-balance ledger and order-fulfillment service."""

__version__ = "1.0.0"
