"""Revenue ledger entries written for attributed conversions."""
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, JSON, String, Text, func

from linktrack.models.base import Base, GUID


class RevenueEntry(Base):
    """Single revenue booking produced by link attribution."""

    __tablename__ = "revenue_entries"

    id = Column(GUID, primary_key=True, default=uuid4)
    amount = Column(Float, nullable=False)
    source = Column(String(50), nullable=False, index=True)
    payment_method = Column(String(50), nullable=False, default='attributed')
    order_ref = Column(String(255), nullable=True, index=True)
    user_ref = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    attribution_metadata = Column(JSON, nullable=False, default=dict)
    recorded_at = Column(DateTime, nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<RevenueEntry {self.source} {self.amount}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "amount": round(self.amount, 2),
            "source": self.source,
            "payment_method": self.payment_method,
            "order_ref": self.order_ref,
            "user_ref": self.user_ref,
            "description": self.description,
            "attribution_metadata": self.attribution_metadata,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
