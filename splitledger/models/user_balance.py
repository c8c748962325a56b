from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from splitledger.db.session import Base

class UserBalance(Base):
    __tablename__ = "user_balances"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (UniqueConstraint("user_id", "group_id", name="uq_user_balances_user_group"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    # positive: the group owes this user, negative: this user owes the group
    balance = Column(Numeric(12, 2), nullable=False, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
