"""SQLAlchemy models package. Import all models so Base.metadata is populated."""

from tradefin.models.base import BaseModel, ModelMixin, TimestampMixin
from tradefin.models.enums import (
    REQUIRED_DOCUMENTS,
    DocumentType,
    InvestmentStatus,
    OpportunityStatus,
    VerificationSource,
)
from tradefin.models.funding import Investment, Opportunity
from tradefin.models.invoices import Invoice, InvoiceDocument

__all__ = [
    "BaseModel",
    "ModelMixin",
    "TimestampMixin",
    "REQUIRED_DOCUMENTS",
    "DocumentType",
    "InvestmentStatus",
    "OpportunityStatus",
    "VerificationSource",
    "Investment",
    "Opportunity",
    "Invoice",
    "InvoiceDocument",
]
