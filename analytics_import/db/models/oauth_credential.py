"""OAuthCredential model - stored Google tokens per user."""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from analytics_import.db.base import Base, TimestampMixin


class OAuthCredential(Base, TimestampMixin):
    __tablename__ = "oauth_credentials"

    user_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    token_type: Mapped[str] = mapped_column(String(20), default="Bearer", nullable=False)
    scope: Mapped[str] = mapped_column(Text, default="", nullable=False)
    expires_at: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Access token expiry, epoch milliseconds",
    )
