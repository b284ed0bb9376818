# Data models for the wallet orchestrator

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class QuoteState(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    ISSUED = "Issued"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (QuoteState.ISSUED, QuoteState.CANCELLED)


# Allowed forward moves of the receive state machine
_QUOTE_TRANSITIONS = {
    QuoteState.UNPAID: {QuoteState.PAID, QuoteState.ISSUED, QuoteState.CANCELLED},
    QuoteState.PAID: {QuoteState.ISSUED},
    QuoteState.ISSUED: set(),
    QuoteState.CANCELLED: set(),
}


class Mint(BaseModel):
    url: str
    active: bool = False


class BalanceRecord(BaseModel):
    mint_url: str
    amount: int = Field(default=0, ge=0)  # sats

    def serialize(self) -> dict:
        # Amounts are stored as strings to avoid precision loss
        return {"mintUrl": self.mint_url, "balance": str(self.amount)}

    @classmethod
    def deserialize(cls, data: dict) -> "BalanceRecord":
        return cls(mint_url=data["mintUrl"], amount=int(data["balance"]))


class Quote(BaseModel):
    id: str
    mint_url: str
    invoice: str
    amount: int
    memo: Optional[str] = None
    state: QuoteState = QuoteState.UNPAID

    def advance(self, state: QuoteState) -> bool:
        """Move the quote forward. Backward or repeated moves are refused."""
        if state not in _QUOTE_TRANSITIONS[self.state]:
            return False
        self.state = state
        return True


class MintQuoteInfo(BaseModel):
    id: str
    invoice: str


class MeltQuote(BaseModel):
    id: str
    amount: int
    fee_reserve: int = 0


class MeltResult(BaseModel):
    quote_id: str
    amount: int
    fee_paid: int = 0
    preimage: Optional[str] = None


class PreparedPayment(BaseModel):
    quote_id: str
    invoice: str
    mint_url: str
    amount: int
    fee_reserve: int = 0

    @property
    def total(self) -> int:
        return self.amount + self.fee_reserve


class WalletStatus(BaseModel):
    mint_url: str
    balance: int
    restored: bool = False


# Events delivered to subscribers


class BalanceChanged(BaseModel):
    kind: Literal["balance_changed"] = "balance_changed"
    mint_url: str
    amount: int


class PaymentReceived(BaseModel):
    kind: Literal["payment_received"] = "payment_received"
    amount: int
    mint_url: str
    quote_id: str


class PaymentSent(BaseModel):
    kind: Literal["payment_sent"] = "payment_sent"
    amount: int
    fee: int = 0
    mint_url: str


class MintSelectionRequired(BaseModel):
    kind: Literal["mint_selection_required"] = "mint_selection_required"
    command: str


# Request bodies for the HTTP surface


class AddMintData(BaseModel):
    url: str


class SetActiveMintData(BaseModel):
    url: str


class RecoverWalletData(BaseModel):
    mnemonic: str


class CreateReceiveData(BaseModel):
    amount: int
    memo: Optional[str] = None


class SendData(BaseModel):
    invoice: str
