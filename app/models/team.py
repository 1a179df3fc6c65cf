from datetime import datetime
from sqlalchemy import String, DateTime, and_
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sql_types import ROW_ID_SQL_TYPE
from app.utils.timestamps import utcnow


class Team(Base):
    __tablename__ = "ts_teams"

    id: Mapped[int] = mapped_column(ROW_ID_SQL_TYPE, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(100))
    logo_url: Mapped[str | None] = mapped_column(String(500))
    country_id: Mapped[str | None] = mapped_column(String(64))
    competition_id: Mapped[str | None] = mapped_column(String(64))
    # Master team id when the provider reports this team as merged/duplicate
    uid: Mapped[str | None] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @hybrid_property
    def is_duplicate(self) -> bool:
        return bool(self.uid and self.uid.strip())

    @is_duplicate.inplace.expression
    @classmethod
    def _is_duplicate_expression(cls):
        return and_(cls.uid.is_not(None), cls.uid != "")
