"""Site model - the tracked sites imports are written to."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from analytics_import.db.base import Base, TimestampMixin


class Site(Base, TimestampMixin):
    """Minimal site record, used for ownership checks."""

    __tablename__ = "sites"

    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
