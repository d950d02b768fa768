"""Outbound customer and operator notifications."""
