"""Simulated payment authorization used by checkout."""
import logging
import random
import secrets
import time
from decimal import Decimal
from typing import Optional

from config import Settings

logger = logging.getLogger(__name__)


class PaymentPolicy:
    name = "base"

    def authorize(self, amount: Decimal) -> bool:
        raise NotImplementedError


class ThresholdPaymentPolicy(PaymentPolicy):
    """Approve totals strictly below ``limit``."""

    name = "threshold"

    def __init__(self, limit: Decimal = Decimal("1000")):
        self.limit = Decimal(limit)

    def authorize(self, amount: Decimal) -> bool:
        return Decimal(amount) < self.limit


class RandomDeclinePaymentPolicy(PaymentPolicy):
    """Decline roughly ``rate`` of all payments."""

    name = "random"

    def __init__(self, rate: float = 0.1, rng: Optional[random.Random] = None):
        if not 0 <= rate <= 1:
            raise ValueError("decline rate must be between 0 and 1")
        self.rate = rate
        self.rng = rng or random.Random()

    def authorize(self, amount: Decimal) -> bool:
        return self.rng.random() >= self.rate


class ApproveAllPaymentPolicy(PaymentPolicy):
    name = "approve"

    def authorize(self, amount: Decimal) -> bool:
        return True


def build_payment_policy(settings: Settings) -> PaymentPolicy:
    if settings.payment_policy == "threshold":
        return ThresholdPaymentPolicy(settings.payment_limit)
    if settings.payment_policy == "random":
        return RandomDeclinePaymentPolicy(settings.payment_decline_rate)
    if settings.payment_policy == "approve":
        return ApproveAllPaymentPolicy()
    raise ValueError(f"Unknown payment policy: {settings.payment_policy}")


def generate_transaction_id() -> str:
    return f"TXN_{int(time.time() * 1000)}_{secrets.token_hex(8).upper()}"
