"""Payment request model (idempotency table).

One row per client-supplied Idempotency-Key. The row is inserted with
status STARTED before the provider is called ("claiming" the key), and
updated exactly once with the terminal status and the serialized response
that every later resubmission of the key replays verbatim.

The unique constraint on idempotency_key is the only concurrency gate.
"""

import uuid

from vault.extensions import db


class PaymentRequest(db.Model):
    __tablename__ = "payment_requests"

    # -- Statuses --
    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TERMINAL_STATUSES = [SUCCEEDED, FAILED]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    idempotency_key = db.Column(
        db.String(255), unique=True, nullable=False
    )
    user_id = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False)  # e.g. USD
    status = db.Column(
        db.String(20), default=STARTED, nullable=False
    )  # STARTED | SUCCEEDED | FAILED
    response_body = db.Column(
        db.Text, nullable=True
    )  # null while STARTED, write-once
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_payment_requests_status_created_at", "status", "created_at"),
    )

    @property
    def is_finalized(self):
        return self.status in self.TERMINAL_STATUSES

    def __repr__(self):
        return f"<PaymentRequest {self.idempotency_key} ({self.status})>"
