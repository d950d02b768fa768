"""
Core package for shared utilities.

Holds configuration, structured logging, the settings cache and the
Celery application used across the service packages.
"""
