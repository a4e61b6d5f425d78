"""Vendor catalogue model."""

from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Uuid
import uuid
from echoshop.database import Base
from echoshop.utils.clock import utcnow


class VendorProduct(Base):
    """A product listed by a vendor"""
    __tablename__ = "vendor_products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<VendorProduct(id={self.id}, vendor_id={self.vendor_id}, name={self.name})>"
