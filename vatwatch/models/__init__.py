"""SQLAlchemy ORM models for VatWatch.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from vatwatch.models.base import Base
from vatwatch.models.vat_request import PendingVatRequest, VatRequestError

__all__ = [
    "Base",
    "PendingVatRequest",
    "VatRequestError",
]
