"""repositories and repository_referrers tables."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from watchman.core.database import Base, TimestampMixin, UTCDateTime


class Repository(TimestampMixin, Base):
    __tablename__ = "repositories"

    url: Mapped[str] = mapped_column(Text, primary_key=True)
    host: Mapped[str] = mapped_column(Text, nullable=False, default="github.com")
    # Watermark: issues not updated since this instant were already scanned.
    last_scanned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    referrers: Mapped[list["RepositoryReferrer"]] = relationship(
        back_populates="repository",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="RepositoryReferrer.used_by_url",
    )


class RepositoryReferrer(Base):
    __tablename__ = "repository_referrers"

    repository_url: Mapped[str] = mapped_column(
        Text, ForeignKey("repositories.url", ondelete="CASCADE"), primary_key=True
    )
    used_by_url: Mapped[str] = mapped_column(Text, primary_key=True)

    repository: Mapped[Repository] = relationship(back_populates="referrers")
