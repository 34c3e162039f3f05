"""
analytics_service.py — Persisted financial analytics snapshot.

sync_financial_analytics() rebuilds the whole snapshot from the current
payment set and overwrites the stored document; the read helpers only ever
look at the last successful snapshot.
"""

import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from core.finance import recompute_financial_analytics
from core.models import (
    ClassCollectionEntry,
    FeeCollectionEntry,
    FinancialAnalyticsPeriod,
    FinancialAnalyticsSnapshot,
    FinancialDefaulterEntry,
)
from core.periods import normalize_period_key
from core.store import KeyValueStore, read_json, remove_key, write_json

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "financialAnalytics"


class FinancialAnalyticsService:
    """Keeps the stored FinancialAnalyticsSnapshot in step with raw payments."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def sync_financial_analytics(
        self, raw_payments: Iterable[Any], now: Optional[Any] = None
    ) -> FinancialAnalyticsSnapshot:
        try:
            snapshot = recompute_financial_analytics(raw_payments, now)
            write_json(self.store, SNAPSHOT_KEY, snapshot.to_document())
        except Exception:
            logger.exception("Error syncing financial analytics")
            raise
        return snapshot

    def get_snapshot(self) -> Optional[FinancialAnalyticsSnapshot]:
        document = read_json(self.store, SNAPSHOT_KEY)
        if not isinstance(document, dict) or "periods" not in document:
            return None
        try:
            return FinancialAnalyticsSnapshot.model_validate(document)
        except ValidationError:
            logger.warning("Stored financial analytics snapshot is malformed; ignoring it")
            return None

    def clear_snapshot(self) -> None:
        remove_key(self.store, SNAPSHOT_KEY)

    def get_period(self, period: Optional[str]) -> Optional[FinancialAnalyticsPeriod]:
        snapshot = self.get_snapshot()
        if snapshot is None:
            return None
        return snapshot.periods.get(normalize_period_key(period))

    def get_fee_collection(self, period: Optional[str]) -> List[FeeCollectionEntry]:
        resolved = self.get_period(period)
        return resolved.fee_collection if resolved else []

    def get_class_collection(
        self, period: Optional[str], class_filter: Optional[str] = "all"
    ) -> List[ClassCollectionEntry]:
        resolved = self.get_period(period)
        if resolved is None:
            return []
        if class_filter and class_filter != "all":
            return [e for e in resolved.class_collection if e.class_label == class_filter]
        return resolved.class_collection

    def get_defaulters(self) -> List[FinancialDefaulterEntry]:
        snapshot = self.get_snapshot()
        return snapshot.defaulters if snapshot else []
