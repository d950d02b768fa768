"""Domain services: ledger, orders, shipments and outbound integrations."""
