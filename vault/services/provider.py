"""Payment provider gateway.

The charge flow only depends on PaymentProvider.charge(). MockProvider
stands in for a real network (Stripe-style) and simulates:

- fixed latency per call
- a simulated network timeout (1 in 10)
- a card decline (1 in 10, drawn independently after the timeout check)
- success: "txn_" + 12 random alphanumeric characters

The two failure checks are separate draws from the same generator, so the
overall failure rate is 0.1 + 0.9 * 0.1 = 0.19, not 0.2.

Usage:
    provider = MockProvider(rng=random.Random(42), latency=0)
    txn_id = provider.charge(100.0, "USD")  # may raise ProviderError
"""

import logging
import random
import string
import time

logger = logging.getLogger(__name__)

TRANSACTION_PREFIX = "txn_"
TRANSACTION_SUFFIX_LENGTH = 12
TRANSACTION_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits

NETWORK_TIMEOUT = "network_timeout_simulated"
CARD_DECLINED = "card_declined"


class ProviderError(Exception):
    """The provider did not complete the charge (decline, timeout, ...).

    str(error) is the message recorded on the FAILED outcome.
    """


class PaymentProvider:
    """Contract for anything that can move money."""

    def charge(self, amount, currency):
        """Charge amount in currency.

        Returns the provider's transaction id.
        Raises ProviderError when the charge did not go through.
        """
        raise NotImplementedError


class MockProvider(PaymentProvider):
    """Simulated provider with injectable randomness and latency."""

    def __init__(self, rng=None, latency=0.5, sleep=time.sleep):
        self.rng = rng if rng is not None else random.Random()
        self.latency = latency
        self._sleep = sleep
        self.call_count = 0

    def charge(self, amount, currency):
        self.call_count += 1

        # Simulate network latency
        if self.latency:
            self._sleep(self.latency)

        # Simulate a dropped connection
        if self.rng.randrange(10) == 0:
            logger.info(f"Mock provider: simulated timeout ({amount} {currency})")
            raise ProviderError(NETWORK_TIMEOUT)

        # Simulate a declined card (independent draw)
        if self.rng.randrange(10) == 1:
            logger.info(f"Mock provider: card declined ({amount} {currency})")
            raise ProviderError(CARD_DECLINED)

        return TRANSACTION_PREFIX + self._random_suffix()

    def _random_suffix(self):
        return "".join(
            self.rng.choice(TRANSACTION_ALPHABET)
            for _ in range(TRANSACTION_SUFFIX_LENGTH)
        )
