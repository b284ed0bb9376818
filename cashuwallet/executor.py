import inspect
from typing import Awaitable, Callable, List, Optional, Union

from loguru import logger

from .backend import WalletHandle
from .balances import BalanceCache
from .errors import (
    ConcurrencyRejected,
    InsufficientBalance,
    InvalidInvoiceFormat,
    ValidationError,
    WalletError,
)
from .events import Notifier
from .models import MeltResult, PaymentSent, PreparedPayment
from .utils import format_sats

ConfirmCallback = Callable[[PreparedPayment], Union[bool, Awaitable[bool]]]
HandleProvider = Callable[[str], Awaitable[WalletHandle]]


def normalize_invoice(invoice: str) -> str:
    invoice = (invoice or "").strip()
    if invoice.lower().startswith("lightning:"):
        invoice = invoice[len("lightning:"):]
    return invoice


class PaymentExecutor:
    """
    Send-side flow: melt quote, confirmation, melt.

    Only one send may be in flight. A send attempted while the guard is
    held raises ConcurrencyRejected and leaves the running send untouched.
    """

    def __init__(
        self,
        balances: BalanceCache,
        notifier: Notifier,
        wallet_for: HandleProvider,
        invoice_prefixes: Optional[List[str]] = None,
    ):
        self.balances = balances
        self.notifier = notifier
        self._wallet_for = wallet_for
        self.invoice_prefixes = [p.lower() for p in (invoice_prefixes or ["lnbc"])]
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    def validate_invoice(self, invoice: str) -> str:
        invoice = normalize_invoice(invoice)
        if not invoice:
            raise InvalidInvoiceFormat("Please enter a Lightning invoice")
        if not invoice.lower().startswith(tuple(self.invoice_prefixes)):
            expected = " or ".join(self.invoice_prefixes)
            raise InvalidInvoiceFormat(
                f"Please enter a valid Lightning invoice (should start with {expected})"
            )
        return invoice

    async def prepare(self, wallet: WalletHandle, invoice: str) -> PreparedPayment:
        invoice = self.validate_invoice(invoice)
        melt_quote = await wallet.melt_quote(invoice)
        prepared = PreparedPayment(
            quote_id=melt_quote.id,
            invoice=invoice,
            mint_url=wallet.mint_url,
            amount=melt_quote.amount,
            fee_reserve=melt_quote.fee_reserve,
        )
        logger.info(
            f"Prepared payment of {format_sats(prepared.amount)} "
            f"(fee reserve {format_sats(prepared.fee_reserve)}) on {wallet.mint_url}"
        )
        return prepared

    def _check_balance(self, prepared: PreparedPayment) -> None:
        available = self.balances.get_cached(prepared.mint_url)
        if available < prepared.total:
            raise InsufficientBalance(
                f"Insufficient balance. Need {format_sats(prepared.total)} "
                f"but only have {format_sats(available)}"
            )

    async def confirm_and_execute(
        self,
        wallet: WalletHandle,
        prepared: PreparedPayment,
        confirm: Optional[ConfirmCallback] = None,
    ) -> Optional[MeltResult]:
        """
        Ask for confirmation, then melt. Returns None when the user declines.

        The balance re-check below is not atomic with the melt call; a
        balance change between the two is not detected here.
        """
        self._check_balance(prepared)
        if confirm is not None:
            approved = confirm(prepared)
            if inspect.isawaitable(approved):
                approved = await approved
            if not approved:
                logger.info(f"Payment of {format_sats(prepared.amount)} cancelled by user")
                return None

        self._check_balance(prepared)
        result = await wallet.melt(prepared.quote_id, prepared.amount)

        spent = prepared.amount + result.fee_paid
        try:
            await self.balances.adjust(prepared.mint_url, -spent)
        except WalletError as e:
            logger.error(f"Failed to cache balance after payment: {e.message}")
        logger.info(f"Sent {format_sats(prepared.amount)} from {prepared.mint_url}")
        self.notifier.emit(
            PaymentSent(amount=prepared.amount, fee=result.fee_paid, mint_url=prepared.mint_url)
        )
        return result

    async def send(
        self,
        mint_url: str,
        invoice: str,
        confirm: Optional[ConfirmCallback] = None,
    ) -> Optional[MeltResult]:
        if self._in_flight:
            raise ConcurrencyRejected("Payment already in progress")

        self._in_flight = True
        try:
            invoice = self.validate_invoice(invoice)
            if self.balances.get_cached(mint_url) <= 0:
                raise ValidationError("Insufficient balance to send payment")
            wallet = await self._wallet_for(mint_url)
            prepared = await self.prepare(wallet, invoice)
            return await self.confirm_and_execute(wallet, prepared, confirm)
        except WalletError as e:
            logger.error(f"Payment failed: {e.message}")
            raise
        finally:
            self._in_flight = False
