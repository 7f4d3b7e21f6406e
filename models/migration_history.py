from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, MigrationType, MigrationStatus


class MigrationHistory(Base):
    """
    Tracks metadata for each migration run.

    Purpose:
    - Audit trail of all migrations after the in-memory status slot expires
    - Data quality review (success vs error counts per run)
    - Error tracking and debugging
    """
    __tablename__ = "migration_history"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    run_id = Column(String(100), unique=True, nullable=False, index=True)

    # Run identification
    migration_type = Column(
        Enum(MigrationType, values_callable=lambda enum_cls: [e.value for e in enum_cls]),
        nullable=False,
        index=True
    )
    status = Column(
        Enum(MigrationStatus, values_callable=lambda enum_cls: [e.value for e in enum_cls]),
        default=MigrationStatus.PENDING,
        nullable=False,
        index=True
    )

    # Scope
    tenant_code = Column(Integer, nullable=True, index=True)
    company_id = Column(Integer, nullable=True)
    table_name = Column(String(255), nullable=True)
    batch_size = Column(Integer, nullable=False)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    total_records = Column(BigInteger, default=0)
    processed_records = Column(BigInteger, default=0)
    success_count = Column(BigInteger, default=0)
    error_count = Column(BigInteger, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    errors = relationship(
        "MigrationErrorRecord",
        back_populates="history",
        order_by="MigrationErrorRecord.recorded_at",
        cascade="all, delete-orphan",
    )

    # Indexes
    __table_args__ = (
        Index("idx_migration_history_type_started", "migration_type", "started_at"),
        Index("idx_migration_history_status", "status", "started_at"),
    )
