# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

import functools
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from firebase_admin import firestore
from google.api_core import exceptions as gexc

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import ListingNotFound, PersistenceFailure
from lazone_core.entitlements.ledger import ConsumptionEntry
from lazone_core.entitlements.types import (
    PAYMENT_STATUS_COMPLETED,
    PURCHASE_STATUS_ACTIVE,
    LegacyPayment,
    ListingRecord,
    ModeUsage,
    PurchaseRecord,
)
from lazone_core.schema.settings import ListingMode

logger = logging.getLogger(__name__)

_SETTINGS_META_FIELDS = ("revision", "updated_at", "id", "key")


def _persistence_errors(fn):
    """Surface backend errors as PersistenceFailure."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except gexc.GoogleAPIError as exc:
            logger.warning("[Firestore] %s failed: %s", fn.__name__, exc)
            raise PersistenceFailure(f"{fn.__name__}: {exc}") from exc

    return wrapper


def _run_transactional(transaction, fn, *args) -> bool:
    """Run `fn(transaction, *args)` as a retried Firestore transaction.

    When every attempt is aborted by contention the client raises ValueError
    chained to the last `Aborted`; that is reported as a lost race (False).
    """
    try:
        return firestore.transactional(fn)(transaction, *args)
    except ValueError as exc:
        if not isinstance(exc.__cause__, gexc.Aborted):
            raise
        logger.info("[Firestore] %s gave up under contention: %s", getattr(fn, "__name__", fn), exc)
        return False


def _record(snapshot) -> Dict[str, Any]:
    return {"id": snapshot.id, **(snapshot.to_dict() or {})}


class FirestoreEntitlementsStore:
    def __init__(self, db: firestore.Client, *, config: EntitlementsConfig | None = None) -> None:
        self._db = db
        self._config = config or EntitlementsConfig()
        self._settings_ref = self._db.collection(self._config.settings_collection).document(
            self._config.settings_doc_id
        )
        self._listings = self._db.collection(self._config.listings_collection)
        self._purchases = self._db.collection(self._config.purchases_collection)
        self._payments = self._db.collection(self._config.legacy_payments_collection)
        self._consumptions = self._db.collection(self._config.consumptions_collection)
        self._sponsorship_usage = self._db.collection(self._config.sponsorship_usage_collection)

    # ------------------------------------------------------------------
    # SettingsStore
    # ------------------------------------------------------------------

    @_persistence_errors
    def read_settings(self) -> Tuple[Optional[Dict[str, Any]], int]:
        snapshot = self._settings_ref.get()
        if not snapshot.exists:
            return None, 0
        return self._settings_from_dict(snapshot.to_dict() or {})

    @staticmethod
    def _settings_from_dict(data: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], int]:
        revision = int(data.get("revision") or 0)
        value = data.get("value")
        if isinstance(value, str):
            # The app stores the settings blob as a JSON string.
            try:
                value = json.loads(value)
            except ValueError:
                logger.warning("[Firestore] Settings value is not valid JSON")
                return None, revision
        if value is None:
            # Older records keep the flat fields at the document root.
            value = {k: v for k, v in data.items() if k not in _SETTINGS_META_FIELDS}
        if not isinstance(value, dict) or not value:
            return None, revision
        return value, revision

    @_persistence_errors
    def compare_and_set_settings(self, expected_revision: int, value: Dict[str, Any]) -> bool:
        return _run_transactional(self._db.transaction(), self._cas_settings_in_txn, expected_revision, value)

    def _cas_settings_in_txn(self, transaction, expected_revision: int, value: Dict[str, Any]) -> bool:
        snapshot = self._settings_ref.get(transaction=transaction)
        current = int((snapshot.to_dict() or {}).get("revision") or 0) if snapshot.exists else 0
        if current != expected_revision:
            return False
        transaction.set(
            self._settings_ref,
            {"value": value, "revision": expected_revision + 1, "updated_at": firestore.SERVER_TIMESTAMP},
        )
        return True

    # ------------------------------------------------------------------
    # ListingStore
    # ------------------------------------------------------------------

    @_persistence_errors
    def count_active_listings(self, user_id: str, mode: ListingMode) -> int:
        query = self._listings.where("user_id", "==", user_id).where("is_active", "==", True)
        # Mode is filtered here: rows without listing_type count as long_term.
        return sum(
            1 for snapshot in query.stream()
            if ListingMode.parse((snapshot.to_dict() or {}).get("listing_type")) is mode
        )

    @_persistence_errors
    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        snapshot = self._listings.document(listing_id).get()
        if not snapshot.exists:
            return None
        return ListingRecord.from_dict(_record(snapshot))

    @_persistence_errors
    def list_sponsored_listings(self, user_id: str) -> List[ListingRecord]:
        query = self._listings.where("user_id", "==", user_id).where("is_sponsored", "==", True)
        return [ListingRecord.from_dict(_record(s)) for s in query.stream()]

    @_persistence_errors
    def set_listing_sponsorship(
        self,
        listing_id: str,
        *,
        sponsored: bool,
        sponsored_until: Optional[datetime],
        sponsored_by: Optional[str],
    ) -> None:
        try:
            self._listings.document(listing_id).update(
                {
                    "is_sponsored": sponsored,
                    "sponsored_until": sponsored_until,
                    "sponsored_by": sponsored_by,
                    "updated_at": firestore.SERVER_TIMESTAMP,
                }
            )
        except gexc.NotFound as exc:
            raise ListingNotFound(f"Listing {listing_id} not found") from exc

    # ------------------------------------------------------------------
    # PurchaseStore
    # ------------------------------------------------------------------

    @_persistence_errors
    def list_purchases(self, user_id: str) -> List[PurchaseRecord]:
        query = self._purchases.where("user_id", "==", user_id)
        return [PurchaseRecord.from_dict(_record(s)) for s in query.stream()]

    @_persistence_errors
    def try_debit_pack(self, purchase_id: str, *, expected_used: int, entry: ConsumptionEntry) -> bool:
        return _run_transactional(self._db.transaction(), self._debit_pack_in_txn, purchase_id, expected_used, entry)

    def _debit_pack_in_txn(self, transaction, purchase_id: str, expected_used: int, entry: ConsumptionEntry) -> bool:
        journal_ref = self._consumptions.document(entry.idempotency_key)
        if journal_ref.get(transaction=transaction).exists:
            return False
        purchase_ref = self._purchases.document(purchase_id)
        snapshot = purchase_ref.get(transaction=transaction)
        if not snapshot.exists:
            return False
        purchase = PurchaseRecord.from_dict(_record(snapshot))
        if purchase.is_subscription or purchase.status != PURCHASE_STATUS_ACTIVE:
            return False
        if purchase.credits_used != expected_used or purchase.credits_used >= purchase.credits_amount:
            return False
        transaction.update(
            purchase_ref,
            {"credits_used": expected_used + 1, "updated_at": firestore.SERVER_TIMESTAMP},
        )
        transaction.set(journal_ref, entry.to_dict())
        return True

    @_persistence_errors
    def try_debit_subscription(
        self,
        purchase_id: str,
        *,
        mode: ListingMode,
        expected: Optional[ModeUsage],
        new: ModeUsage,
        entry: ConsumptionEntry,
    ) -> bool:
        return _run_transactional(
            self._db.transaction(),
            self._debit_subscription_in_txn,
            purchase_id,
            mode,
            expected,
            new,
            entry,
        )

    def _debit_subscription_in_txn(
        self,
        transaction,
        purchase_id: str,
        mode: ListingMode,
        expected: Optional[ModeUsage],
        new: ModeUsage,
        entry: ConsumptionEntry,
    ) -> bool:
        journal_ref = self._consumptions.document(entry.idempotency_key)
        if journal_ref.get(transaction=transaction).exists:
            return False
        purchase_ref = self._purchases.document(purchase_id)
        snapshot = purchase_ref.get(transaction=transaction)
        if not snapshot.exists:
            return False
        purchase = PurchaseRecord.from_dict(_record(snapshot))
        if not purchase.is_subscription or purchase.mode_usage.get(mode) != expected:
            return False
        transaction.update(
            purchase_ref,
            {f"mode_usage.{mode.value}": new.to_dict(), "updated_at": firestore.SERVER_TIMESTAMP},
        )
        transaction.set(journal_ref, entry.to_dict())
        return True

    # ------------------------------------------------------------------
    # LegacyPaymentStore
    # ------------------------------------------------------------------

    @_persistence_errors
    def list_legacy_payments(self, user_id: str, mode: ListingMode) -> List[LegacyPayment]:
        query = self._payments.where("user_id", "==", user_id).where("status", "==", PAYMENT_STATUS_COMPLETED)
        payments = [LegacyPayment.from_dict(_record(s)) for s in query.stream()]
        return [p for p in payments if p.mode is mode]

    @_persistence_errors
    def find_payment_bound_to(self, listing_id: str) -> Optional[LegacyPayment]:
        query = self._payments.where("property_id", "==", listing_id).limit(1)
        for snapshot in query.stream():
            return LegacyPayment.from_dict(_record(snapshot))
        return None

    @_persistence_errors
    def try_bind_legacy_payment(self, payment_id: str, *, listing_id: str, entry: ConsumptionEntry) -> bool:
        return _run_transactional(self._db.transaction(), self._bind_payment_in_txn, payment_id, listing_id, entry)

    def _bind_payment_in_txn(self, transaction, payment_id: str, listing_id: str, entry: ConsumptionEntry) -> bool:
        journal_ref = self._consumptions.document(entry.idempotency_key)
        if journal_ref.get(transaction=transaction).exists:
            return False
        payment_ref = self._payments.document(payment_id)
        snapshot = payment_ref.get(transaction=transaction)
        if not snapshot.exists:
            return False
        payment = LegacyPayment.from_dict(_record(snapshot))
        if not payment.is_available:
            return False
        transaction.update(
            payment_ref,
            {"property_id": listing_id, "updated_at": firestore.SERVER_TIMESTAMP},
        )
        transaction.set(journal_ref, entry.to_dict())
        return True

    # ------------------------------------------------------------------
    # ConsumptionJournal
    # ------------------------------------------------------------------

    @_persistence_errors
    def get_consumption(self, idempotency_key: str) -> Optional[ConsumptionEntry]:
        snapshot = self._consumptions.document(idempotency_key).get()
        if not snapshot.exists:
            return None
        return ConsumptionEntry.from_dict(snapshot.to_dict() or {})

    # ------------------------------------------------------------------
    # SponsorshipStore
    # ------------------------------------------------------------------

    @staticmethod
    def _usage_doc_id(user_id: str, period: str) -> str:
        return f"{user_id}:{period}"

    @_persistence_errors
    def get_sponsorship_usage(self, user_id: str, period: str) -> int:
        snapshot = self._sponsorship_usage.document(self._usage_doc_id(user_id, period)).get()
        if not snapshot.exists:
            return 0
        return int((snapshot.to_dict() or {}).get("used") or 0)


    @_persistence_errors
    def try_sponsor_listing(
        self,
        user_id: str,
        period: str,
        listing_id: str,
        *,
        expected_used: int,
        sponsored_until: datetime,
    ) -> bool:
        return _run_transactional(
            self._db.transaction(),
            self._sponsor_listing_in_txn,
            user_id,
            period,
            listing_id,
            expected_used,
            sponsored_until,
        )

    def _sponsor_listing_in_txn(
        self,
        transaction,
        user_id: str,
        period: str,
        listing_id: str,
        expected_used: int,
        sponsored_until: datetime,
    ) -> bool:
        usage_ref = self._sponsorship_usage.document(self._usage_doc_id(user_id, period))
        listing_ref = self._listings.document(listing_id)
        usage = usage_ref.get(transaction=transaction)
        listing = listing_ref.get(transaction=transaction)
        current = int((usage.to_dict() or {}).get("used") or 0) if usage.exists else 0
        if current != expected_used:
            return False
        if not listing.exists:
            raise ListingNotFound(f"Listing {listing_id} not found")
        transaction.set(
            usage_ref,
            {
                "user_id": user_id,
                "period": period,
                "used": expected_used + 1,
                "updated_at": firestore.SERVER_TIMESTAMP,
            },
        )
        transaction.update(
            listing_ref,
            {
                "is_sponsored": True,
                "sponsored_until": sponsored_until,
                "sponsored_by": user_id,
                "updated_at": firestore.SERVER_TIMESTAMP,
            },
        )
        return True
