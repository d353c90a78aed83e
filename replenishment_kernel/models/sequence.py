"""Sequence counter table backing SequenceService."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from replenishment_kernel.db.base import Base


class SequenceCounter(Base):
    """
    One row per named sequence holding its last allocated value.

    Incremented in place by a single UPDATE so concurrent allocators
    serialize on the row.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "order_number")
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
