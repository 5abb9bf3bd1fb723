"""Charge service — the idempotent "charge a user" flow.

Per request:

    Unclaimed ──lookup hit──────────────▶ Replayed   (saved body, no charge)
        │
        ├──claim denied─────────────────▶ Rejected   (ConcurrencyConflict)
        │
        ▼
     Claimed ──provider.charge──▶ finalize ──▶ Finalized

A declined or timed-out charge, or any other exception from the provider,
is a completed charge with status FAILED, not an error.

If finalize fails after the provider was called, the caller still gets
the true outcome, but the record stays STARTED and every resubmission of
that key is rejected until it is reconciled by hand. This is logged at
CRITICAL with the key and the status we tried to write. There is no
background sweep for these records (see `flask stuck-requests`).
"""

import json
import logging
import math
import re

from vault.errors import ConcurrencyConflict, PersistenceFault, ValidationError
from vault.models.payment_request import PaymentRequest
from vault.services.provider import ProviderError

logger = logging.getLogger(__name__)

CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")

UNKNOWN_PROVIDER_ERROR = "provider_error"
MISSING_TRANSACTION_ID = "missing_transaction_id"


class ChargeRequest:
    """Validated charge payload."""

    def __init__(self, user_id, amount, currency):
        self.user_id = user_id
        self.amount = amount
        self.currency = currency

    def __repr__(self):
        return f"<ChargeRequest {self.user_id} {self.amount} {self.currency}>"


class ChargeOutcome:
    """Result of a charge: SUCCEEDED with a transaction id, or FAILED with an error."""

    def __init__(self, status, transaction_id=None, error=None):
        self.status = status
        self.transaction_id = transaction_id
        self.error = error

    @property
    def success(self):
        return self.status == PaymentRequest.SUCCEEDED

    @classmethod
    def succeeded(cls, transaction_id):
        return cls(PaymentRequest.SUCCEEDED, transaction_id=transaction_id)

    @classmethod
    def failed(cls, error):
        return cls(PaymentRequest.FAILED, error=error)

    def to_dict(self):
        data = {"success": self.success, "status": self.status}
        if self.transaction_id is not None:
            data["transaction_id"] = self.transaction_id
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_json(self):
        """Compact JSON, stored once and replayed byte-for-byte."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, body):
        data = json.loads(body)
        return cls(
            data["status"],
            transaction_id=data.get("transaction_id"),
            error=data.get("error"),
        )

    def __eq__(self, other):
        if not isinstance(other, ChargeOutcome):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<ChargeOutcome {self.status} {self.transaction_id or self.error}>"


class ChargeResult:
    """What the transport sends back.

    body is the exact JSON text of the outcome; for a replay it is the
    stored text, untouched.
    """

    def __init__(self, outcome, body, replayed=False):
        self.outcome = outcome
        self.body = body
        self.replayed = replayed


def validate_idempotency_key(key):
    """Return key unchanged. Raises ValidationError if it is missing or malformed.

    Keys are opaque: surrounding whitespace is rejected, not trimmed, so
    " abc" and "abc" can never collapse into one record.
    """
    if not key or not key.strip():
        raise ValidationError("Missing Idempotency-Key header")
    if key != key.strip():
        raise ValidationError("Idempotency-Key must not have surrounding whitespace")
    if len(key) > 255:
        raise ValidationError("Idempotency-Key is too long (max 255 characters)")
    return key


def parse_charge_request(data):
    """Build a ChargeRequest from decoded JSON.

    Raises ValidationError describing every problem found.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON: expected an object")

    errors = []

    user_id = data.get("user_id")
    if not isinstance(user_id, str) or not user_id.strip():
        errors.append("user_id is required.")

    amount = data.get("amount")
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        errors.append("amount must be a number.")
    elif not math.isfinite(amount) or amount <= 0:
        errors.append("amount must be greater than zero.")

    currency = data.get("currency")
    if not isinstance(currency, str) or not CURRENCY_RE.match(currency):
        errors.append("currency must be a 3-letter code.")

    if errors:
        raise ValidationError(" ".join(errors))

    return ChargeRequest(
        user_id=user_id.strip(),
        amount=float(amount),
        currency=currency.upper(),
    )


class ChargeService:
    """Runs one charge request through the idempotency protocol.

    Args:
        store:    IdempotencyStore (lookup / claim / finalize).
        provider: PaymentProvider used for the actual charge.
    """

    def __init__(self, store, provider):
        self.store = store
        self.provider = provider

    def handle(self, key, payload):
        """Charge once per idempotency key.

        Args:
            key:     Client-supplied Idempotency-Key.
            payload: Decoded JSON body ({user_id, amount, currency}).

        Returns:
            ChargeResult (replayed=True when the saved response was returned).

        Raises:
            ValidationError:     missing key or bad payload (no store access).
            ConcurrencyConflict: key already claimed and not yet finalized.
            PersistenceFault:    store unavailable before the charge.
        """
        key = validate_idempotency_key(key)
        request = parse_charge_request(payload)

        # --- Replay ---
        saved = self.store.lookup(key)
        if saved is not None:
            logger.info(f"Idempotency hit: returning saved response for {key}")
            return ChargeResult(ChargeOutcome.from_json(saved), saved, replayed=True)

        # --- Claim ---
        if not self.store.claim(key, request.user_id, request.amount, request.currency):
            logger.warning(f"Concurrent processing detected for key {key}")
            raise ConcurrencyConflict(key)

        # --- Charge ---
        outcome = self._charge(request)
        body = outcome.to_json()

        # --- Finalize ---
        try:
            self.store.finalize(key, outcome.status, body)
        except PersistenceFault as e:
            # Record stays STARTED; the caller still gets the real outcome.
            logger.critical(
                f"CRITICAL: Failed to save response for key {key} "
                f"(attempted status {outcome.status}, "
                f"transaction_id={outcome.transaction_id}, error={outcome.error}): {e}"
            )

        return ChargeResult(outcome, body)

    def _charge(self, request):
        """Call the provider. Any exception it raises becomes a FAILED outcome."""
        try:
            transaction_id = self.provider.charge(request.amount, request.currency)
        except ProviderError as e:
            logger.info(f"Charge failed for user {request.user_id}: {e}")
            return ChargeOutcome.failed(str(e) or UNKNOWN_PROVIDER_ERROR)
        except Exception as e:
            logger.error(
                f"Unexpected {type(e).__name__} from provider for user "
                f"{request.user_id}: {e}",
                exc_info=True,
            )
            return ChargeOutcome.failed(str(e) or type(e).__name__)

        if not transaction_id:
            logger.error(f"Provider returned no transaction id for user {request.user_id}")
            return ChargeOutcome.failed(MISSING_TRANSACTION_ID)
        return ChargeOutcome.succeeded(transaction_id)
