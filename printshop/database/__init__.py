"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: async engine, session factory and FastAPI dependency
- models: SQLAlchemy ORM models for all entities
"""

__all__: list[str] = []
