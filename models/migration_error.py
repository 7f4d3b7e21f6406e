from sqlalchemy import Column, String, BigInteger, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base


class MigrationErrorRecord(Base):
    """
    Stores individual write/translation failures of a migration run.

    Design Decisions:
    - record_ref is the row ordinal (or synthesized entry number) within the run
    - record_data keeps the offending translated values for later inspection
    - Capped per run by MIGRATION_MAX_LOGGED_ERRORS
    """
    __tablename__ = "migration_errors"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    run_id = Column(String(100), ForeignKey("migration_history.run_id", ondelete="CASCADE"), nullable=False, index=True)

    table_name = Column(String(255), nullable=True)
    record_ref = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    record_data = Column(JSONB, nullable=True)

    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    history = relationship("MigrationHistory", back_populates="errors")

    __table_args__ = (
        Index("idx_migration_errors_run_recorded", "run_id", "recorded_at"),
    )
