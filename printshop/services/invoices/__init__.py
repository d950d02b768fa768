"""Invoice generation requests."""
