"""Charges blueprint — POST /charge

Public JSON API. The client sends an Idempotency-Key header and a JSON
body {user_id, amount, currency}; resubmitting the same key returns the
original response instead of charging again.

Status codes:
  200: charge completed (SUCCEEDED or FAILED), or a replayed response
  400: missing Idempotency-Key or invalid payload
  409: key is already being processed; retry later with the same key
  503: database unavailable before the charge; retry with the same key
"""

import logging

from flask import Blueprint, current_app, jsonify, make_response, request

from vault.errors import ConcurrencyConflict, PersistenceFault, ValidationError
from vault.extensions import db, limiter
from vault.services.charge_service import ChargeService
from vault.services.idempotency_store import IdempotencyStore

logger = logging.getLogger(__name__)

charges_bp = Blueprint("charges", __name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"


def get_charge_service():
    """Build a ChargeService bound to this request's session and the app's provider."""
    return ChargeService(
        store=IdempotencyStore(db.session),
        provider=current_app.extensions["payment_provider"],
    )


@charges_bp.route("/charge", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHARGE_RATE_LIMIT"])
def charge():
    """Charge a user, at most once per Idempotency-Key.

    The body is parsed regardless of Content-Type; unparsable JSON is a 400.
    """
    key = request.headers.get(IDEMPOTENCY_HEADER)
    payload = request.get_json(force=True, silent=True)

    service = get_charge_service()
    try:
        result = service.handle(key, payload)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConcurrencyConflict:
        return jsonify({"error": "Concurrent processing detected"}), 409
    except PersistenceFault as e:
        logger.error(f"Storage unavailable for key {key}: {e}")
        return jsonify({"error": "Storage unavailable, retry with the same key"}), 503

    response = make_response(result.body, 200)
    response.mimetype = "application/json"
    if result.replayed:
        response.headers[REPLAYED_HEADER] = "true"
    return response
