"""Idempotency store — persistence for the charge claim protocol.

Responsible for:
- Looking up a finalized response by Idempotency-Key (replay)
- Claiming a key by inserting its STARTED row (unique constraint = gate)
- Finalizing a claimed key with its terminal status and response body
- Read-only inspection for operations (get, find_stuck)

Every write commits immediately. Claim, charge and finalize are three
separate units of work; nothing here spans them.

Duplicate-key inserts are reported as claim=False. Any other database
error is raised as PersistenceFault so callers never mistake an outage for
a conflict.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vault.errors import PersistenceFault
from vault.models.payment_request import PaymentRequest

logger = logging.getLogger(__name__)


class IdempotencyStore:
    """Idempotency records backed by a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def lookup(self, key):
        """Return the saved response body for key, or None.

        None covers both "no record" and "record still STARTED"; the
        caller learns which one it was from claim().
        """
        try:
            record = (
                self.session.query(PaymentRequest)
                .filter_by(idempotency_key=key)
                .first()
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Lookup failed for key {key}: {e}")
            raise PersistenceFault(f"Lookup failed: {e}", key=key) from e

        if record is None or record.response_body is None:
            return None
        return record.response_body

    def claim(self, key, user_id, amount, currency):
        """Insert the STARTED row for key.

        Returns True if this caller now owns the key, False if a row for
        the key already exists.
        Raises PersistenceFault on any other database error.
        """
        record = PaymentRequest(
            idempotency_key=key,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentRequest.STARTED,
        )
        try:
            self.session.add(record)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info(f"Claim denied for key {key}: record already exists")
            return False
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Claim failed for key {key}: {e}")
            raise PersistenceFault(f"Claim failed: {e}", key=key) from e
        return True

    def finalize(self, key, status, response_body):
        """Record the terminal status and response for a claimed key.

        Only a row still in STARTED is updated, so a finalized record can
        never be overwritten or moved back.

        Raises PersistenceFault if status is not terminal, no STARTED row
        exists for key, or the write fails.
        """
        if status not in PaymentRequest.TERMINAL_STATUSES:
            raise PersistenceFault(
                f"Cannot finalize with non-terminal status {status!r}", key=key
            )

        try:
            updated = (
                self.session.query(PaymentRequest)
                .filter_by(idempotency_key=key, status=PaymentRequest.STARTED)
                .update(
                    {
                        "status": status,
                        "response_body": response_body,
                        "updated_at": datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                self.session.rollback()
                raise PersistenceFault(
                    f"No STARTED record to finalize for key {key}", key=key
                )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFault(f"Finalize failed: {e}", key=key) from e

    # ──────────────────────────────────────────────
    # Inspection (read-only)
    # ──────────────────────────────────────────────

    def get(self, key):
        """Return the PaymentRequest for key, or None."""
        return (
            self.session.query(PaymentRequest)
            .filter_by(idempotency_key=key)
            .first()
        )

    def find_stuck(self, older_than):
        """List STARTED records created before older_than (a datetime).

        These are keys whose finalize never landed: every resubmission is
        rejected until someone reconciles them with the provider by hand.
        """
        return (
            self.session.query(PaymentRequest)
            .filter(
                PaymentRequest.status == PaymentRequest.STARTED,
                PaymentRequest.created_at < older_than,
            )
            .order_by(PaymentRequest.created_at.asc())
            .all()
        )
