from datetime import datetime
from uuid import UUID
from typing import Annotated
from sqlalchemy import JSON, DateTime, Integer
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, DeclarativeBase

from leadroute.enums import LeadStatusEnum

uuid_pk = Annotated[UUID, mapped_column(primary_key=True)]


class Base(DeclarativeBase):
    pass


class LeadRecord(Base):
    """
    Stored lead document.

    status and received_at are copied out of the document for querying;
    version backs the conditional writes in LeadRepository.
    """
    __tablename__ = "leads"

    id: Mapped[uuid_pk]
    status: Mapped[LeadStatusEnum] = mapped_column(SQLEnum(LeadStatusEnum), index=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
