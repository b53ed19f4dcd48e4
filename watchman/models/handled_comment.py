"""handled_comments table — one row per comment (or issue body) already alerted on."""

from datetime import datetime

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from watchman.core.database import Base, UTCDateTime


class HandledComment(Base):
    __tablename__ = "handled_comments"

    url: Mapped[str] = mapped_column(Text, primary_key=True)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)
    handled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
