"""Tests for the idempotency store.

Covers:
- lookup: missing key, STARTED record, finalized record
- claim: first claim wins, duplicate denied, storage faults raised
- concurrent claims from separate connections: exactly one winner
- finalize: terminal write, write-once, no regression, bad status
- find_stuck / get inspection helpers
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from vault.errors import PersistenceFault
from vault.extensions import db
from vault.models.payment_request import PaymentRequest
from vault.services.idempotency_store import IdempotencyStore


def _record(key):
    return PaymentRequest.query.filter_by(idempotency_key=key).first()


class TestLookup:

    def test_unknown_key_returns_none(self, store):
        assert store.lookup("nope") is None

    def test_started_record_is_not_a_hit(self, store):
        assert store.claim("k1", "u1", 100.0, "USD") is True
        assert store.lookup("k1") is None

    def test_finalized_record_returns_body(self, store):
        body = '{"success":true,"status":"SUCCEEDED","transaction_id":"txn_a"}'
        store.claim("k1", "u1", 100.0, "USD")
        store.finalize("k1", PaymentRequest.SUCCEEDED, body)

        assert store.lookup("k1") == body

    def test_database_error_raises_persistence_fault(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("gone"))
        store = IdempotencyStore(session)

        with pytest.raises(PersistenceFault):
            store.lookup("k1")
        session.rollback.assert_called_once()


class TestClaim:

    def test_first_claim_inserts_started_record(self, store):
        assert store.claim("k1", "u1", 100.0, "USD") is True

        record = _record("k1")
        assert record.status == PaymentRequest.STARTED
        assert record.response_body is None
        assert record.user_id == "u1"
        assert record.amount == 100.0
        assert record.currency == "USD"

    def test_second_claim_same_key_is_denied(self, db_session):
        first = IdempotencyStore(db_session)
        second = IdempotencyStore(db_session)

        assert first.claim("k1", "u1", 100.0, "USD") is True
        assert second.claim("k1", "u2", 999.0, "EUR") is False

        # Original payload is untouched
        assert PaymentRequest.query.count() == 1
        record = _record("k1")
        assert record.user_id == "u1"
        assert record.amount == 100.0

    def test_claim_denied_after_finalize(self, store):
        store.claim("k1", "u1", 100.0, "USD")
        store.finalize("k1", PaymentRequest.FAILED, '{"success":false}')

        assert store.claim("k1", "u1", 100.0, "USD") is False

    def test_integrity_error_is_reported_as_denied(self):
        session = MagicMock()
        session.commit.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE"))
        store = IdempotencyStore(session)

        assert store.claim("k1", "u1", 1.0, "USD") is False
        session.rollback.assert_called_once()

    def test_other_database_error_is_a_fault_not_a_denial(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
        store = IdempotencyStore(session)

        with pytest.raises(PersistenceFault) as exc:
            store.claim("k1", "u1", 1.0, "USD")
        assert exc.value.key == "k1"
        session.rollback.assert_called_once()


class TestConcurrentClaims:
    """Separate connections racing for one key: the unique constraint picks one winner."""

    THREADS = 8

    def test_exactly_one_concurrent_claim_wins(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'claims.db'}",
            connect_args={"timeout": 30, "check_same_thread": False},
        )
        PaymentRequest.__table__.create(engine)
        Session = sessionmaker(bind=engine)

        barrier = threading.Barrier(self.THREADS)
        results = []
        errors = []
        lock = threading.Lock()

        def claim(n):
            session = Session()
            try:
                barrier.wait()
                claimed = IdempotencyStore(session).claim("k", f"u{n}", 100.0, "USD")
                with lock:
                    results.append(claimed)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [
            threading.Thread(target=claim, args=(n,)) for n in range(self.THREADS)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        try:
            assert errors == []
            assert len(results) == self.THREADS
            assert results.count(True) == 1
            assert results.count(False) == self.THREADS - 1

            with Session() as session:
                rows = session.query(PaymentRequest).filter_by(idempotency_key="k").all()
                assert len(rows) == 1
                assert rows[0].status == PaymentRequest.STARTED
        finally:
            engine.dispose()


class TestFinalize:

    def test_sets_status_and_body(self, store):
        store.claim("k1", "u1", 100.0, "USD")
        store.finalize("k1", PaymentRequest.SUCCEEDED, '{"x":1}')

        db.session.expire_all()
        record = _record("k1")
        assert record.status == PaymentRequest.SUCCEEDED
        assert record.response_body == '{"x":1}'
        assert record.updated_at is not None

    def test_is_write_once(self, store):
        store.claim("k1", "u1", 100.0, "USD")
        store.finalize("k1", PaymentRequest.SUCCEEDED, '{"first":true}')

        with pytest.raises(PersistenceFault):
            store.finalize("k1", PaymentRequest.FAILED, '{"second":true}')

        db.session.expire_all()
        record = _record("k1")
        assert record.status == PaymentRequest.SUCCEEDED
        assert record.response_body == '{"first":true}'

    def test_without_claim_raises(self, store):
        with pytest.raises(PersistenceFault):
            store.finalize("never-claimed", PaymentRequest.SUCCEEDED, "{}")
        assert _record("never-claimed") is None

    def test_rejects_non_terminal_status(self, store):
        store.claim("k1", "u1", 100.0, "USD")
        with pytest.raises(PersistenceFault):
            store.finalize("k1", PaymentRequest.STARTED, "{}")

    def test_database_error_raises_persistence_fault(self):
        session = MagicMock()
        session.query.return_value.filter_by.return_value.update.return_value = 1
        session.commit.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        store = IdempotencyStore(session)

        with pytest.raises(PersistenceFault):
            store.finalize("k1", PaymentRequest.SUCCEEDED, "{}")
        session.rollback.assert_called_once()


class TestInspection:

    def _add(self, key, status, created_at):
        db.session.add(PaymentRequest(
            idempotency_key=key,
            user_id="u1",
            amount=5.0,
            currency="USD",
            status=status,
            created_at=created_at,
        ))
        db.session.commit()

    def test_find_stuck_only_returns_old_started_records(self, store):
        now = datetime.now(timezone.utc)
        self._add("old-started", PaymentRequest.STARTED, now - timedelta(hours=2))
        self._add("older-started", PaymentRequest.STARTED, now - timedelta(hours=5))
        self._add("new-started", PaymentRequest.STARTED, now - timedelta(minutes=1))
        self._add("old-done", PaymentRequest.SUCCEEDED, now - timedelta(hours=3))

        stuck = store.find_stuck(now - timedelta(minutes=15))

        assert [r.idempotency_key for r in stuck] == ["older-started", "old-started"]

    def test_get_returns_record_or_none(self, store):
        store.claim("k1", "u1", 100.0, "USD")
        assert store.get("k1").idempotency_key == "k1"
        assert store.get("missing") is None
