from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index
from sqlalchemy.sql import func
from custody.database import Base


class WithdrawalStatus:
    pending = "pending"
    completed = "completed"
    failed = "failed"


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __table_args__ = (
        Index("idx_withdrawals_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    requester = Column(String(255), nullable=False, index=True)
    asset = Column(String(20), nullable=False)
    amount = Column(Numeric(36, 18), nullable=False)
    to_address = Column(String(42), nullable=False)
    status = Column(String(20), nullable=False, default=WithdrawalStatus.pending)
    tx_hash = Column(String(66), nullable=True)
    failure_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)
