from sqlmodel import SQLModel, Field
from datetime import date
from uuid import UUID, uuid4
from sqlalchemy import UniqueConstraint

class QueueCounter(SQLModel, table=True):
    __tablename__ = "queue_counters"
    __table_args__ = (
        UniqueConstraint("department", "queue_date", name="uq_queue_counters_partition"),
    )
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    department: str
    queue_date: date
    last_number: int = Field(default=0)
