"""Enums shared by the off-chain models."""

import enum


class VerificationSource(str, enum.Enum):
    SERVICE = "service"      # verify-minimal answered
    FALLBACK = "fallback"    # service unavailable, conservative default used
    POLL = "poll"            # asynchronous verification picked up by polling
    PENDING = "pending"      # asynchronous verification requested, no result yet


class OpportunityStatus(str, enum.Enum):
    AVAILABLE = "available"
    FUNDING = "funding"
    FUNDED = "funded"
    COMPLETED = "completed"


class InvestmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class DocumentType(str, enum.Enum):
    COMMERCIAL_INVOICE = "commercial_invoice"
    EXPORT_DECLARATION = "export_declaration"
    CERTIFICATE_ORIGIN = "certificate_origin"
    BILL_OF_LADING = "bill_of_lading"
    PACKING_LIST = "packing_list"
    PHYTOSANITARY = "phytosanitary"


REQUIRED_DOCUMENTS: frozenset[DocumentType] = frozenset({
    DocumentType.COMMERCIAL_INVOICE,
    DocumentType.EXPORT_DECLARATION,
    DocumentType.CERTIFICATE_ORIGIN,
    DocumentType.BILL_OF_LADING,
})
