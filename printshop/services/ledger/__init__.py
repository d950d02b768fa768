"""Voucher balances and loyalty points."""
