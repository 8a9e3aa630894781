"""
Decisions API - interactive preview and admin price-check
"""
from decimal import Decimal
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from apps.api.dependencies import get_context, require_admin_token
from packages.common.context import AppContext
from packages.common.exceptions import SendError
from packages.common.schemas.receipts import StoredReceipt
from packages.domain.decisions.engine import preview_decision
from packages.domain.decisions.schemas import (
    PriceCheckRequest,
    ReceiptLite,
    Suggestion,
    price_to_cents,
)
from packages.domain.notifications.messages import compose_price_drop_message

logger = structlog.get_logger()
router = APIRouter()


async def _load_receipt(ctx: AppContext, receipt_id: str) -> StoredReceipt:
    receipt = await ctx.receipts.get(receipt_id)
    if receipt is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="receipt not found")
    return receipt


def _lite(receipt: StoredReceipt) -> ReceiptLite:
    return ReceiptLite(
        merchant=receipt.merchant,
        purchase_date=receipt.purchase_date,
        total_cents=receipt.total_cents,
    )


@router.get("/preview")
async def preview(
    receipt_id: str = Query(..., min_length=1),
    current_price_cents: Optional[int] = Query(None, ge=0),
    current_price: Optional[Decimal] = Query(None, ge=0, description="Decimal amount, e.g. 279.99"),
    ctx: AppContext = Depends(get_context),
):
    """Evaluate a stored receipt now, optionally against a current price"""
    receipt = await _load_receipt(ctx, receipt_id)

    current = current_price_cents if current_price_cents is not None else price_to_cents(current_price)
    result = preview_decision(
        _lite(receipt),
        ctx.clock(),
        current_amount=current,
        catalog=ctx.policy_catalog(),
    )
    return {"ok": True, "receipt_id": receipt_id, "preview": result}


@router.post("/price-check", dependencies=[Depends(require_admin_token)])
async def price_check(
    request: PriceCheckRequest,
    ctx: AppContext = Depends(get_context),
):
    """
    Compare a current price with the purchase price.

    send=false is a dry run: nothing is emailed or written. With send=true the
    user is emailed only when the drop qualifies for a price adjustment.
    """
    receipt = await _load_receipt(ctx, request.receipt_id)
    current = request.current_cents()

    result = preview_decision(
        _lite(receipt),
        ctx.clock(),
        current_amount=current,
        catalog=ctx.policy_catalog(),
    )

    email = {"attempted": False, "sent": False, "to": None}
    if request.send and result.suggestion == Suggestion.PRICE_ADJUST:
        email["attempted"] = True
        to = await ctx.profiles.get_email(receipt.user_id) or ctx.settings.notification_fallback_address
        email["to"] = to
        if to:
            message = compose_price_drop_message(receipt.merchant, receipt.order_id, result, receipt.currency)
            try:
                await ctx.notifier().send(to, message.subject, message.body)
                email["sent"] = True
            except SendError as e:
                logger.error("price_drop_email_failed",
                            receipt_id=receipt.id,
                            error=str(e))
        else:
            logger.warning("price_drop_no_recipient", receipt_id=receipt.id, user_id=receipt.user_id)

    logger.info("price_check_completed",
               receipt_id=receipt.id,
               suggestion=result.suggestion.value,
               savings_cents=result.totals.savings_cents,
               dry_run=not request.send,
               sent=email["sent"])

    return {"ok": True, "receipt_id": receipt.id, "preview": result, "email": email}
