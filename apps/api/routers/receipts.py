"""
Receipts API - ingest extractor output and read stored receipts
"""
import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from apps.api.dependencies import get_context
from packages.common.context import AppContext
from packages.common.schemas.receipts import (
    IngestionResult,
    ReceiptIngestRequest,
    StoredReceipt,
)

logger = structlog.get_logger()
router = APIRouter()


@router.post("", response_model=IngestionResult, status_code=status.HTTP_201_CREATED)
async def ingest_receipt(
    request: ReceiptIngestRequest,
    response: Response,
    ctx: AppContext = Depends(get_context),
) -> IngestionResult:
    """
    Store an extracted receipt once and open its deadlines.

    Returns 201 for a new receipt, 200 when the same receipt was already
    ingested (redelivery).
    """
    result = await ctx.ingestion().ingest(request.user, request.receipt, source=request.source)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/{receipt_id}", response_model=StoredReceipt)
async def get_receipt(
    receipt_id: str,
    ctx: AppContext = Depends(get_context),
) -> StoredReceipt:
    receipt = await ctx.receipts.get(receipt_id)
    if receipt is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="receipt not found")
    return receipt
