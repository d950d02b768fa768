"""Carrier shipments and tracking reconciliation."""
