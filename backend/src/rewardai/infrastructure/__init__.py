"""
Infrastructure package - persistence for invoices and distribution runs.
"""

from .database import Base, Database, DistributionRecord, InvoiceRecord
from .repository import DistributionRepository, InvoiceRepository

__all__ = [
    "Base",
    "Database",
    "DistributionRecord",
    "DistributionRepository",
    "InvoiceRecord",
    "InvoiceRepository",
]
