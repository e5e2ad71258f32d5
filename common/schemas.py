from enum import Enum
from pydantic import AliasChoices, BaseModel, Field
from typing import List, Literal, Optional

class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING

class PaymentIntent(BaseModel):
    """A submitted transaction reference and what the ledger said about it.

    Observed transfer details use short names: `amount` is the observed
    amount in TON (observedAmount), `sender` the counterparty address
    (counterpartyAddress) and `received_at` the ledger timestamp in
    seconds (receivedAt); they stay None until a matching transfer is seen.
    `receiver` is only filled in on confirmation.
    """
    reference: str
    status: PaymentStatus = PaymentStatus.PENDING
    confirmations: int = 0
    amount: Optional[float] = None
    sender: Optional[str] = None
    receiver: Optional[str] = None
    received_at: Optional[int] = None
    failure_reason: Optional[Literal["amount_mismatch", "timeout"]] = None
    created_at: float
    updated_at: float

class LedgerTransfer(BaseModel):
    """One incoming transfer as reported by the ledger query service"""
    hash: str
    amount_raw: int  # smallest unit (nanotons)
    sender: Optional[str] = None
    message_type: Literal["internal", "external"]
    timestamp: int

class SubmitPayment(BaseModel):
    reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices("reference", "transactionHash"),
    )

class PaymentResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    reference: Optional[str] = None
    payment: Optional[PaymentIntent] = None

class PaymentListResponse(BaseModel):
    success: bool = True
    payments: List[PaymentIntent]

class WebhookNotification(BaseModel):
    transactionHash: Optional[str] = None
    status: Optional[str] = None

class PaymentEvent(BaseModel):
    type: Literal["PaymentSubmitted", "PaymentConfirmed", "PaymentFailed"]
    reference: str
    amount: Optional[float] = None
    sender: Optional[str] = None
    reason: Optional[str] = None
    timestamp: float
