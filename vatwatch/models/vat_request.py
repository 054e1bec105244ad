"""VAT request tables: the pending queue and the error bin."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from vatwatch.models.base import Base, TimestampMixin


class PendingVatRequest(TimestampMixin, Base):
    """A VAT number that is checked against VIES on every cycle."""

    __tablename__ = "pending_vat_requests"
    __table_args__ = (
        UniqueConstraint("owner_id", "country_code", "vat_number", name="uq_pending_vat_identity"),
    )

    owner_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True, comment="Telegram chat ID")
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    vat_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PendingVatRequest owner={self.owner_id} vat={self.country_code}{self.vat_number}>"


class VatRequestError(TimestampMixin, Base):
    """One failed processing attempt of a pending VAT request."""

    __tablename__ = "vat_request_errors"

    owner_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True, comment="Telegram chat ID")
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    vat_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="Carried over from the pending request"
    )
    error_text: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<VatRequestError id={self.id} vat={self.country_code}{self.vat_number}>"
