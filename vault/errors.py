"""Error taxonomy for the charge flow.

- ValidationError: missing Idempotency-Key or unusable payload. Raised
  before any store access.
- ConcurrencyConflict: the key is already claimed (in flight, or finalized
  but not yet visible to this read). The caller should retry with the
  same key.
- PersistenceFault: the database is unreachable or a write failed.

A provider decline or timeout is not an error here; it is a completed
charge with status FAILED (see services.provider.ProviderError).
"""


class VaultError(Exception):
    """Base class for errors surfaced to the transport layer."""


class ValidationError(VaultError):
    pass


class ConcurrencyConflict(VaultError):
    def __init__(self, key):
        super().__init__(f"Idempotency key {key!r} is already being processed")
        self.key = key


class PersistenceFault(VaultError):
    def __init__(self, message, key=None):
        super().__init__(message)
        self.key = key
