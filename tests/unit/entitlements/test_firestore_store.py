# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Unit tests for FirestoreEntitlementsStore against a mocked client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore
from google.api_core import exceptions as gexc

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import ListingNotFound, PersistenceFailure
from lazone_core.entitlements.adapters.firestore import FirestoreEntitlementsStore
from lazone_core.entitlements.ledger import ConsumptionEntry, build_consumption_key
from lazone_core.entitlements.types import CreditSourceKind, ModeUsage
from lazone_core.schema.settings import ListingMode


MARCH_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _snapshot(data=None, *, doc_id="doc", exists=True):
    snapshot = MagicMock()
    snapshot.exists = exists
    snapshot.id = doc_id
    snapshot.to_dict.return_value = data
    return snapshot


def _entry(listing_id="lst-1", kind=CreditSourceKind.CREDIT_PACK, unit_id="pack-a"):
    return ConsumptionEntry(
        idempotency_key=build_consumption_key(listing_id),
        user_id="user-1",
        mode=ListingMode.LONG_TERM,
        listing_id=listing_id,
        source_kind=kind,
        unit_id=unit_id,
        created_at=MARCH_1,
    )


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def doc(db):
    return db.collection.return_value.document.return_value


@pytest.fixture
def fs_store(db):
    return FirestoreEntitlementsStore(db, config=EntitlementsConfig())


class TestFirestoreReads:
    def test_collections_from_config(self, db):
        FirestoreEntitlementsStore(db, config=EntitlementsConfig(purchases_collection="purchases_v2"))
        names = [c.args[0] for c in db.collection.call_args_list]
        assert "app_settings" in names
        assert "purchases_v2" in names
        assert "listing_consumptions" in names

    def test_settings_json_string_value(self, fs_store, doc):
        doc.get.return_value = _snapshot({"value": '{"enabled": false}', "revision": 4})
        assert fs_store.read_settings() == ({"enabled": False}, 4)

    def test_settings_flat_document(self, fs_store, doc):
        doc.get.return_value = _snapshot({"free_listings_agence": 2, "updated_at": "x"})
        value, revision = fs_store.read_settings()
        assert value == {"free_listings_agence": 2}
        assert revision == 0

    def test_settings_missing(self, fs_store, doc):
        doc.get.return_value = _snapshot(exists=False)
        assert fs_store.read_settings() == (None, 0)

    def test_backend_error_becomes_persistence_failure(self, fs_store, doc):
        doc.get.side_effect = gexc.ServiceUnavailable("firestore down")
        with pytest.raises(PersistenceFailure):
            fs_store.read_settings()

    def test_count_active_filters_mode(self, fs_store, db):
        query = db.collection.return_value.where.return_value.where.return_value
        query.stream.return_value = [
            _snapshot({"listing_type": "long_term"}),
            _snapshot({}),
            _snapshot({"listing_type": "short_term"}),
        ]
        assert fs_store.count_active_listings("user-1", ListingMode.LONG_TERM) == 2
        assert fs_store.count_active_listings("user-1", ListingMode.SHORT_TERM) == 1

    def test_list_purchases_parses_records(self, fs_store, db):
        db.collection.return_value.where.return_value.stream.return_value = [
            _snapshot(
                {
                    "user_id": "user-1",
                    "product_id": "com.lazone.sub.premium.monthly",
                    "is_subscription": True,
                    "status": "active",
                    "created_at": "2026-03-01T00:00:00Z",
                    "mode_usage": {"short_term": {"period_start": "2026-03-01T00:00:00+00:00", "used": 7}},
                },
                doc_id="sub-1",
            )
        ]
        (purchase,) = fs_store.list_purchases("user-1")
        assert purchase.id == "sub-1"
        assert purchase.purchase_date == MARCH_1
        assert purchase.subscription_tier.value == "premium"
        assert purchase.mode_usage[ListingMode.SHORT_TERM] == ModeUsage(MARCH_1, 7)

    def test_legacy_payments_filtered_by_mode(self, fs_store, db):
        db.collection.return_value.where.return_value.where.return_value.stream.return_value = [
            _snapshot({"user_id": "user-1", "status": "completed", "listing_type": "short_term"}, doc_id="p1"),
            _snapshot({"user_id": "user-1", "status": "completed"}, doc_id="p2"),
        ]
        payments = fs_store.list_legacy_payments("user-1", ListingMode.LONG_TERM)
        assert [p.id for p in payments] == ["p2"]

    def test_get_consumption(self, fs_store, doc):
        doc.get.return_value = _snapshot(_entry().to_dict())
        entry = fs_store.get_consumption(build_consumption_key("lst-1"))
        assert entry.unit_id == "pack-a"
        assert entry.source_kind is CreditSourceKind.CREDIT_PACK

    def test_sponsoring_missing_listing(self, fs_store, doc):
        doc.update.side_effect = gexc.NotFound("no document")
        with pytest.raises(ListingNotFound):
            fs_store.set_listing_sponsorship("lst-x", sponsored=True, sponsored_until=MARCH_1, sponsored_by="user-1")


class TestFirestoreTransactions:
    def test_pack_debit(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [
            _snapshot(exists=False),
            _snapshot(
                {"user_id": "user-1", "purchase_date": MARCH_1, "status": "active",
                 "credits_amount": 5, "credits_used": 2},
                doc_id="pack-a",
            ),
        ]
        entry = _entry()

        assert fs_store._debit_pack_in_txn(transaction, "pack-a", 2, entry) is True
        transaction.update.assert_called_once_with(
            doc, {"credits_used": 3, "updated_at": firestore.SERVER_TIMESTAMP}
        )
        transaction.set.assert_called_once_with(doc, entry.to_dict())

    def test_pack_debit_stale_read(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [
            _snapshot(exists=False),
            _snapshot({"user_id": "user-1", "purchase_date": MARCH_1, "credits_amount": 5, "credits_used": 3}),
        ]
        assert fs_store._debit_pack_in_txn(transaction, "pack-a", 2, _entry()) is False
        transaction.update.assert_not_called()
        transaction.set.assert_not_called()

    def test_existing_journal_entry_blocks_debit(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [_snapshot(_entry().to_dict())]
        assert fs_store._debit_pack_in_txn(transaction, "pack-a", 0, _entry()) is False
        transaction.update.assert_not_called()

    def test_subscription_debit(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [
            _snapshot(exists=False),
            _snapshot(
                {
                    "user_id": "user-1",
                    "purchase_date": MARCH_1,
                    "is_subscription": True,
                    "product_id": "com.lazone.sub.pro.monthly",
                    "mode_usage": {"long_term": {"period_start": MARCH_1.isoformat(), "used": 3}},
                },
                doc_id="sub-1",
            ),
        ]
        new = ModeUsage(MARCH_1, 4)
        entry = _entry(kind=CreditSourceKind.SUBSCRIPTION, unit_id="sub-1")

        ok = fs_store._debit_subscription_in_txn(
            transaction, "sub-1", ListingMode.LONG_TERM, ModeUsage(MARCH_1, 3), new, entry
        )

        assert ok is True
        args, _ = transaction.update.call_args
        assert args[1]["mode_usage.long_term"] == {"period_start": MARCH_1.isoformat(), "used": 4}

    def test_legacy_bind_requires_unbound(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [
            _snapshot(exists=False),
            _snapshot({"user_id": "user-1", "status": "completed", "property_id": "lst-9"}, doc_id="pay-1"),
        ]
        entry = _entry(kind=CreditSourceKind.LEGACY_PAYMENT, unit_id="pay-1")
        assert fs_store._bind_payment_in_txn(transaction, "pay-1", "lst-1", entry) is False

    def test_settings_cas(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.return_value = _snapshot({"revision": 2})

        assert fs_store._cas_settings_in_txn(transaction, 1, {"enabled": True}) is False
        assert fs_store._cas_settings_in_txn(transaction, 2, {"enabled": True}) is True
        args, _ = transaction.set.call_args
        assert args[1]["revision"] == 3
        assert args[1]["value"] == {"enabled": True}

    def test_sponsor_listing_counts_and_flags_together(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [_snapshot({"used": 1}), _snapshot({"user_id": "user-1"}, doc_id="lst-1")]
        until = datetime(2026, 3, 4, tzinfo=timezone.utc)

        assert fs_store._sponsor_listing_in_txn(transaction, "user-1", "2026-03", "lst-1", 1, until) is True
        usage_args, _ = transaction.set.call_args
        assert usage_args[1]["used"] == 2
        assert usage_args[1]["period"] == "2026-03"
        listing_args, _ = transaction.update.call_args
        assert listing_args[1]["is_sponsored"] is True
        assert listing_args[1]["sponsored_until"] == until
        assert listing_args[1]["sponsored_by"] == "user-1"

    def test_sponsor_listing_stale_counter(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [_snapshot(exists=False), _snapshot({"user_id": "user-1"})]

        assert fs_store._sponsor_listing_in_txn(transaction, "user-1", "2026-03", "lst-1", 1, MARCH_1) is False
        transaction.set.assert_not_called()
        transaction.update.assert_not_called()

    def test_sponsor_missing_listing_writes_nothing(self, fs_store, doc):
        transaction = MagicMock()
        doc.get.side_effect = [_snapshot(exists=False), _snapshot(exists=False)]

        with pytest.raises(ListingNotFound):
            fs_store._sponsor_listing_in_txn(transaction, "user-1", "2026-03", "lst-x", 0, MARCH_1)
        transaction.set.assert_not_called()
        transaction.update.assert_not_called()


def _contended(fn):
    def run(transaction, *args):
        try:
            raise gexc.Aborted("too much contention")
        except gexc.Aborted as exc:
            raise ValueError("Failed to commit transaction in 5 attempts.") from exc

    return run


def _immediate(fn):
    def run(transaction, *args):
        return fn(transaction, *args)

    return run


class TestTransactionRetries:
    def test_exhausted_attempts_are_a_lost_race(self, fs_store, monkeypatch):
        monkeypatch.setattr(firestore, "transactional", _contended)

        assert fs_store.try_debit_pack("pack-a", expected_used=0, entry=_entry()) is False
        assert fs_store.try_bind_legacy_payment("pay-1", listing_id="lst-1", entry=_entry()) is False
        assert fs_store.try_debit_subscription(
            "sub-1",
            mode=ListingMode.LONG_TERM,
            expected=None,
            new=ModeUsage(MARCH_1, 1),
            entry=_entry(kind=CreditSourceKind.SUBSCRIPTION, unit_id="sub-1"),
        ) is False
        assert fs_store.try_sponsor_listing(
            "user-1", "2026-03", "lst-1", expected_used=0, sponsored_until=MARCH_1
        ) is False

    def test_other_value_errors_propagate(self, fs_store, monkeypatch):
        def broken(fn):
            def run(transaction, *args):
                raise ValueError("bad document")

            return run

        monkeypatch.setattr(firestore, "transactional", broken)
        with pytest.raises(ValueError):
            fs_store.try_debit_pack("pack-a", expected_used=0, entry=_entry())

    def test_transaction_runs_the_conditional_write(self, fs_store, doc, monkeypatch):
        monkeypatch.setattr(firestore, "transactional", _immediate)
        doc.get.side_effect = [_snapshot({"used": 0}), _snapshot({"user_id": "user-1"})]

        assert fs_store.try_sponsor_listing(
            "user-1", "2026-03", "lst-1", expected_used=0, sponsored_until=MARCH_1
        ) is True
