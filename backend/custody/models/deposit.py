from sqlalchemy import Column, Integer, BigInteger, String, Numeric, DateTime, Index
from sqlalchemy.sql import func
from custody.database import Base


class DepositStatus:
    confirmed = "confirmed"
    processed = "processed"


class Deposit(Base):
    __tablename__ = "deposits"
    __table_args__ = (
        Index("idx_deposits_user_status", "user_ref", "status"),
    )

    id = Column(Integer, primary_key=True)
    tx_hash = Column(String(66), unique=True, nullable=False, index=True)
    log_index = Column(Integer, nullable=True)
    user_ref = Column(String(255), nullable=False)
    from_address = Column(String(42), nullable=False)
    asset = Column(String(20), nullable=False)
    amount = Column(Numeric(36, 18), nullable=False)
    block_number = Column(BigInteger, nullable=False)
    confirmations = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=DepositStatus.confirmed, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)
