from datetime import datetime
from sqlalchemy import Integer, String, DateTime, and_
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.sql_types import ROW_ID_SQL_TYPE
from app.utils.timestamps import utcnow


class Competition(Base):
    __tablename__ = "ts_competitions"

    id: Mapped[int] = mapped_column(ROW_ID_SQL_TYPE, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(100))
    logo_url: Mapped[str | None] = mapped_column(String(500))
    country_id: Mapped[str | None] = mapped_column(String(64))
    category_id: Mapped[str | None] = mapped_column(String(64))
    type: Mapped[int | None] = mapped_column(Integer)  # 1 league, 2 cup, 3 friendly
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
