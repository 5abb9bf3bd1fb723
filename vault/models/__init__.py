# Models package — import all models here so Alembic can discover them.

from vault.models.payment_request import PaymentRequest  # noqa: F401
