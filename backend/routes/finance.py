"""
Finance routes — fee collection analytics endpoints.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from core.analytics_service import FinancialAnalyticsService
from core.store import get_default_store

router = APIRouter()


def _service() -> FinancialAnalyticsService:
    return FinancialAnalyticsService(get_default_store())


@router.post("/analytics/sync")
async def sync_analytics(payload: dict):
    """
    Rebuild the analytics snapshot from the full payment list.
    Expects: { "payments": [...raw payment records...] }
    """
    payments = payload.get("payments")
    if payments is None:
        raise HTTPException(400, "No payments provided.")
    if not isinstance(payments, list):
        raise HTTPException(400, "'payments' must be a list.")

    snapshot = _service().sync_financial_analytics(payments)
    return snapshot.to_document()


@router.get("/analytics")
async def get_analytics():
    """Last computed snapshot: all periods plus defaulters."""
    snapshot = _service().get_snapshot()
    if snapshot is None:
        raise HTTPException(404, "Financial analytics have not been computed yet.")
    return snapshot.to_document()


@router.get("/fee-collection")
async def fee_collection(period: Optional[str] = None):
    """Monthly collected vs expected for a period (defaults to current term)."""
    return [e.to_document() for e in _service().get_fee_collection(period)]


@router.get("/class-collection")
async def class_collection(
    period: Optional[str] = None,
    class_filter: str = Query("all", alias="class"),
):
    """Class-wise collection, optionally for a single class."""
    return [e.to_document() for e in _service().get_class_collection(period, class_filter)]


@router.get("/defaulters")
async def defaulters():
    """Students with outstanding payments across all time."""
    return [e.to_document() for e in _service().get_defaulters()]
