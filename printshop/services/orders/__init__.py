"""Order lifecycle: status rules, state machine, repository and service."""
