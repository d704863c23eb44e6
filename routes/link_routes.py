"""
Payment Link Routes
FastAPI routes for creating, funding, claiming and inspecting payment links

Handlers are plain ``def`` so FastAPI runs them in its thread pool; key
derivation and database calls block. Ledger errors propagate to the
application's LedgerError handler, which renders ``{"error", "message"}``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from services.claim_orchestrator import ClaimOrchestrator
from services.fee_engine import FeeCalculator
from services.link_ledger import LinkLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payment-links"])


class CreateLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(..., description="Amount in the asset's base units")
    asset_type: str = Field("SOL", alias="assetType")
    creator_address: Optional[str] = Field(None, alias="creatorAddress")
    spend_key: Optional[str] = Field(None, alias="spendKey")


class RecordDepositRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deposit_transaction_ref: str = Field(..., alias="depositTransactionRef")
    depositor_address: Optional[str] = Field(None, alias="depositorAddress")


class ClaimLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recipient_address: str = Field(..., alias="recipientAddress")
    withdraw_transaction_ref: str = Field(..., alias="withdrawTransactionRef")


def _ledger(request: Request) -> LinkLedger:
    return request.app.state.ledger


def _orchestrator(request: Request) -> ClaimOrchestrator:
    return request.app.state.claim_orchestrator


@router.post("/link", status_code=201)
def create_link(body: CreateLinkRequest, request: Request):
    """Create a link waiting for its deposit"""
    link_id = _ledger(request).create(
        amount=body.amount,
        asset_type=body.asset_type,
        creator_address=body.creator_address,
        spend_key=body.spend_key,
    )
    return {"success": True, "linkId": link_id}


@router.get("/link/{link_id}")
def get_link(link_id: str, request: Request):
    return _ledger(request).get(link_id).to_dict()


@router.post("/link/{link_id}/deposit")
def record_deposit(link_id: str, body: RecordDepositRequest, request: Request):
    view = _ledger(request).record_deposit(
        link_id,
        body.deposit_transaction_ref,
        depositor_address=body.depositor_address,
    )
    return {"success": True, "link": view.to_dict()}


@router.post("/link/{link_id}/claim")
def claim_link(link_id: str, body: ClaimLinkRequest, request: Request):
    """
    Claim a deposited link for a recipient.

    409 means another claim already won; clients must not retry.
    """
    result = _orchestrator(request).claim(
        link_id,
        body.recipient_address,
        body.withdraw_transaction_ref,
    )
    return result.to_dict()


@router.get("/link/{link_id}/fees")
def get_link_fees(link_id: str, request: Request):
    """Withdrawal fee breakdown for a link, in base units and display strings"""
    view = _ledger(request).get(link_id)
    fees = FeeCalculator.compute_fee(view.amount, view.asset_type)
    return {
        "linkId": view.id,
        "assetType": view.asset_type,
        "amount": view.amount,
        "baseFee": fees.base_fee,
        "percentageFee": fees.percentage_fee,
        "totalFee": fees.total_fee,
        "netAmount": fees.net_amount,
        "display": FeeCalculator.format_fee_estimate(view.amount, view.asset_type),
    }


@router.get("/link/{link_id}/transactions")
def get_link_transactions(link_id: str, request: Request):
    records = _ledger(request).transactions(link_id)
    return {"linkId": link_id, "transactions": [record.to_dict() for record in records]}


@router.get("/link/{link_id}/spend-key")
def reveal_spend_key(link_id: str, request: Request):
    """Decrypt the link's spend key; possession of the link id is the credential"""
    spend_key = _ledger(request).reveal_spend_key(link_id)
    logger.info(f"🔐 Spend key revealed for link {link_id[:8]}...")
    return {"linkId": link_id, "spendKey": spend_key}


@router.get("/history/{address}")
def get_history(address: str, request: Request):
    history = _ledger(request).history(address)
    return {
        "address": address,
        "sent": [view.to_dict() for view in history["sent"]],
        "received": [view.to_dict() for view in history["received"]],
    }


@router.get("/link")
def list_links(request: Request, limit: Optional[int] = Query(None, ge=1, le=500)):
    """Newest links first (admin and debugging)"""
    views = _ledger(request).list_links(limit=limit)
    return {"count": len(views), "links": [view.to_dict() for view in views]}
