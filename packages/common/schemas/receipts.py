"""
Receipt schemas - extractor output and stored receipt context
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ReceiptSource(str, Enum):
    """Channel a receipt arrived through"""
    EMAIL = "email"
    GMAIL = "gmail"
    AMAZON = "amazon"
    PDF = "pdf"
    MANUAL = "manual"


class ExtractedReceipt(BaseModel):
    """
    Normalized fields from an external extractor.

    Extractors leave a field as None when they cannot determine it.
    """
    merchant: Optional[str] = Field(None, description="Merchant name or domain")
    order_id: Optional[str] = Field(None, description="Merchant order / receipt number")
    purchase_date: Optional[str] = Field(None, description="ISO-8601 date or timestamp")
    total_cents: Optional[int] = Field(None, description="Total in minor currency units")
    currency: Optional[str] = Field(None, max_length=3, description="ISO-4217 code")

    class Config:
        json_schema_extra = {
            "example": {
                "merchant": "Best Buy",
                "order_id": "BBY01-806482930291",
                "purchase_date": "2025-01-15T18:22:00-05:00",
                "total_cents": 34999,
                "currency": "USD",
            }
        }


class ReceiptIngestRequest(BaseModel):
    """Request body for POST /receipts"""
    user: str = Field(..., min_length=1)
    source: ReceiptSource = ReceiptSource.MANUAL
    receipt: ExtractedReceipt


class StoredReceipt(BaseModel):
    """Receipt row as read back from the database"""
    id: str
    user_id: str
    merchant: Optional[str] = None
    order_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    currency: str = "USD"
    total_cents: Optional[int] = None
    dedupe_key: Optional[str] = None
    source: ReceiptSource = ReceiptSource.MANUAL


class IngestionResult(BaseModel):
    """Outcome of ingesting one extracted receipt"""
    receipt_id: str
    created: bool = Field(..., description="False when the dedupe key already existed")
    dedupe_key: Optional[str] = None
    deadline_ids: List[str] = Field(default_factory=list)
