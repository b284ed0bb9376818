import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from .backend import WalletHandle
from .balances import BalanceCache
from .errors import ValidationError, WalletError
from .events import Notifier
from .models import PaymentReceived, Quote, QuoteState
from .utils import format_sats

#######################################
####### RECEIVE-SIDE QUOTE POLLING #####
#######################################

# Mints push nothing: a paid invoice is only noticed by polling the quote.


class QuotePoller:
    """
    Owns the polling loop of a single quote.

    The timer loop and manual checks share ``check_once``; finalizing is
    guarded by a per-quote lock and flag so ``mint`` runs at most once
    concurrently and never again after it succeeded.
    """

    def __init__(
        self,
        quote: Quote,
        wallet: WalletHandle,
        balances: BalanceCache,
        notifier: Notifier,
        interval: float,
        split_target: Any = None,
    ):
        self.quote = quote
        self.wallet = wallet
        self.balances = balances
        self.notifier = notifier
        self.interval = interval
        self.split_target = split_target
        self._finalize_lock = asyncio.Lock()
        self._finalizing = False
        self._mint_attempts = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self.quote.state.is_terminal:
            return
        self._task = asyncio.create_task(self._run(), name=f"quote-poll-{self.quote.id}")

    async def _run(self) -> None:
        # First check happens immediately, before the first interval elapses
        while not self.quote.state.is_terminal:
            try:
                await self.check_once()
            except Exception as e:
                logger.error(f"Error checking quote {self.quote.id}: {type(e).__name__}: {str(e)}")
            if self.quote.state.is_terminal:
                break
            await asyncio.sleep(self.interval)
        logger.debug(f"Polling finished for quote {self.quote.id} ({self.quote.state.value})")

    async def check_once(self) -> QuoteState:
        if self.quote.state.is_terminal or self._finalizing:
            return self.quote.state
        attempt = self._mint_attempts

        try:
            state = await self.wallet.mint_quote_state(self.quote.id)
        except WalletError as e:
            logger.warning(f"Quote state lookup for {self.quote.id} failed, retrying: {e.message}")
            return self.quote.state

        logger.debug(f"Quote {self.quote.id} is {state.value}")
        if state == QuoteState.PAID:
            self.quote.advance(QuoteState.PAID)
            await self._finalize(attempt)
        elif state == QuoteState.ISSUED and self.quote.state != QuoteState.ISSUED:
            # Already minted elsewhere, nothing left to redeem
            if self.quote.advance(QuoteState.ISSUED):
                logger.warning(f"Quote {self.quote.id} was issued outside this poller")
        return self.quote.state

    async def _finalize(self, attempt: int) -> None:
        async with self._finalize_lock:
            # One mint attempt per round; a failed one is retried on the next tick
            if self.quote.state != QuoteState.PAID or self._mint_attempts != attempt:
                return
            self._mint_attempts += 1
            self._finalizing = True
            try:
                minted = await self.wallet.mint(self.quote.id, self.split_target)
            except WalletError as e:
                logger.error(f"Failed to mint tokens for quote {self.quote.id}: {e.message}")
                return
            finally:
                self._finalizing = False

            self.quote.advance(QuoteState.ISSUED)
            amount = minted or self.quote.amount
            logger.info(f"Received {format_sats(amount)} on {self.quote.mint_url} (quote {self.quote.id})")

        try:
            await self.balances.adjust(self.quote.mint_url, amount)
        except WalletError as e:
            logger.error(f"Failed to cache received balance: {e.message}")
        self.notifier.emit(
            PaymentReceived(amount=amount, mint_url=self.quote.mint_url, quote_id=self.quote.id)
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def wait(self, timeout: Optional[float] = None) -> QuoteState:
        if self._task is not None:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        return self.quote.state


class PaymentQuotePoller:
    """
    Creates receive quotes and keeps one poller per quote id.

    Finished pollers stay available for lookups until more than
    ``max_finished`` of them pile up; the oldest are dropped first.
    """

    def __init__(
        self,
        balances: BalanceCache,
        notifier: Notifier,
        interval: float = 1.0,
        split_target: Any = None,
        max_finished: int = 100,
    ):
        self.balances = balances
        self.notifier = notifier
        self.interval = interval
        self.split_target = split_target
        self.max_finished = max_finished
        self._pollers: Dict[str, QuotePoller] = {}

    async def create_quote(
        self, wallet: WalletHandle, amount: int, memo: Optional[str] = None
    ) -> Quote:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Please enter a valid amount")
        info = await wallet.mint_quote(amount, memo)
        quote = Quote(
            id=info.id,
            mint_url=wallet.mint_url,
            invoice=info.invoice,
            amount=amount,
            memo=memo,
        )
        logger.info(f"Created mint quote {quote.id} for {format_sats(amount)} on {quote.mint_url}")
        return quote

    def get(self, quote_id: str) -> Optional[QuotePoller]:
        return self._pollers.get(quote_id)

    def start_polling(self, quote: Quote, wallet: WalletHandle) -> QuotePoller:
        poller = self._pollers.get(quote.id)
        if poller is None:
            poller = QuotePoller(
                quote, wallet, self.balances, self.notifier, self.interval, self.split_target
            )
            self._pollers[quote.id] = poller
        poller.start()
        self._prune()
        return poller

    def _prune(self) -> None:
        finished = [
            quote_id
            for quote_id, poller in self._pollers.items()
            if poller.quote.state.is_terminal and not poller.running
        ]
        excess = len(finished) - self.max_finished
        if excess <= 0:
            return
        for quote_id in finished[:excess]:
            del self._pollers[quote_id]
        logger.debug(f"Dropped {excess} finished quote(s)")

    async def check_once(self, quote_id: str) -> Optional[Quote]:
        poller = self._pollers.get(quote_id)
        if poller is None:
            return None
        await poller.check_once()
        return poller.quote

    async def stop_polling(self, quote_id: str) -> None:
        """Cancel the timer for a quote. Safe to call repeatedly."""
        poller = self._pollers.get(quote_id)
        if poller is not None:
            await poller.stop()

    async def cancel(self, quote_id: str) -> Optional[Quote]:
        poller = self._pollers.get(quote_id)
        if poller is None:
            return None
        await poller.stop()
        if poller.quote.advance(QuoteState.CANCELLED):
            logger.info(f"Cancelled quote {quote_id}")
        return poller.quote

    async def stop_all(self) -> None:
        for quote_id in list(self._pollers):
            await self.stop_polling(quote_id)

    async def reset(self) -> None:
        """Stop every poller and forget all quotes, e.g. after the seed changed."""
        await self.stop_all()
        self._pollers.clear()
