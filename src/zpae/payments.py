from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    user_id: str
    amount: float
    currency: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PaymentGateway(Protocol):
    def initiate_payment_flow(self, user_id: str, amount: float) -> Any: ...


class InMemoryPaymentGateway:
    """
    Records every initiated flow and returns a PaymentIntent. Settlement and
    payment-URI formatting belong to the real payment service.
    """

    def __init__(self, currency: str = "ZEC", id_factory: Optional[Callable[[], str]] = None) -> None:
        self.currency = currency
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.intents: List[PaymentIntent] = []

    def initiate_payment_flow(self, user_id: str, amount: float) -> PaymentIntent:
        intent = PaymentIntent(
            intent_id=self._id_factory(),
            user_id=user_id,
            amount=round(float(amount), 8),
            currency=self.currency,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.intents.append(intent)
        return intent
