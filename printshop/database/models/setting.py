"""
Operator-editable key/value settings.

Carrier credentials and the sender address are stored here under the
"shipping" category and read through the settings cache.
"""

from typing import Optional

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from printshop.database.base import BaseModel


class Setting(BaseModel):
    """Single configuration value."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (Index("ix_settings_category", "category"),)
