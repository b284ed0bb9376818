import asyncio
import inspect
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from .backend import WalletBackend, WalletHandle, load_backend
from .balances import BalanceCache
from .db import Database
from .errors import (
    ConcurrencyRejected,
    ModuleUnavailableError,
    QuoteError,
    ValidationError,
    WalletError,
)
from .events import Notifier
from .executor import ConfirmCallback, PaymentExecutor
from .handles import WalletHandleCache
from .migrations import run_migrations
from .models import (
    MeltResult,
    Mint,
    MintSelectionRequired,
    PreparedPayment,
    Quote,
    WalletStatus,
)
from .registry import MintRegistry
from .settings import WalletSettings
from .tasks import PaymentQuotePoller
from .utils import format_sats
from .vault import SecretVault

BackupCallback = Callable[[str], Optional[Awaitable[None]]]
PendingCommand = Tuple[str, Callable[[], Awaitable[object]]]


class WalletOrchestrator:
    """
    Facade over the wallet components; the only object the UI talks to.

    Construct once per process, ``await init()`` before use and
    ``await dispose()`` on teardown. Commands that need a mint while none
    is active are parked as a continuation and resumed as soon as a mint
    becomes active.
    """

    def __init__(
        self,
        settings: Optional[WalletSettings] = None,
        backend: Optional[WalletBackend] = None,
        confirm_payment: Optional[ConfirmCallback] = None,
        backup_mnemonic: Optional[BackupCallback] = None,
    ):
        self.settings = settings or WalletSettings()
        self.notifier = Notifier()
        self.db = Database(self.settings.get_database_url())
        self.registry = MintRegistry(self.db)
        self.balances = BalanceCache(self.db, self.notifier, self._wallet_for)
        self.executor = PaymentExecutor(
            self.balances,
            self.notifier,
            self._wallet_for,
            invoice_prefixes=self.settings.invoice_prefixes,
        )
        self._backend = backend
        self._confirm_payment = confirm_payment
        self._backup_mnemonic = backup_mnemonic
        self.handles: Optional[WalletHandleCache] = None
        self.vault: Optional[SecretVault] = None
        self.poller: Optional[PaymentQuotePoller] = None
        self._pending: Optional[PendingCommand] = None
        self._tasks: Set[asyncio.Task] = set()
        self._ready = False

    async def __aenter__(self) -> "WalletOrchestrator":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    async def init(self) -> None:
        if self._ready:
            return
        if self._backend is None:
            self._backend = load_backend(self.settings.backend_module)

        self.handles = WalletHandleCache(
            self._backend,
            self.settings.wallets_dir,
            currency_unit=self.settings.currency_unit,
            hash_db_paths=self.settings.hash_db_paths,
        )
        self.vault = SecretVault(
            self.settings.vault_path,
            self.settings.vault_key_path,
            generator=getattr(self._backend, "generate_mnemonic", None),
        )
        self.poller = PaymentQuotePoller(
            self.balances,
            self.notifier,
            interval=self.settings.poll_interval,
            split_target=getattr(self._backend, "split_target", None),
        )

        await run_migrations(self.db)
        await self.registry.load()
        await self.balances.load()
        self._ready = True
        logger.info("Wallet orchestrator ready")

    async def dispose(self) -> None:
        if not self._ready:
            await self.db.close()
            return
        self._ready = False
        self._pending = None
        await self.poller.stop_all()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.handles.invalidate_all()
        self.notifier.clear()
        await self.db.close()
        logger.info("Wallet orchestrator disposed")

    def _require_ready(self) -> None:
        if not self._ready:
            raise ModuleUnavailableError("Wallet orchestrator is not initialized")

    # Pending-command continuation

    def _defer(self, name: str, command: Callable[[], Awaitable[object]]) -> None:
        self._pending = (name, command)
        logger.info(f"No active mint set, {name} will resume once a mint is selected")
        self.notifier.emit(MintSelectionRequired(command=name))
        return None

    @property
    def pending_command(self) -> Optional[str]:
        return self._pending[0] if self._pending else None

    def cancel_pending(self) -> None:
        if self._pending is not None:
            logger.info(f"Dropped pending {self._pending[0]}, mint selection cancelled")
        self._pending = None

    def _resume_pending(self) -> None:
        if self._pending is None or not self.registry.active_url:
            return
        name, command = self._pending
        self._pending = None
        task = asyncio.create_task(self._run_pending(name, command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_pending(self, name: str, command: Callable[[], Awaitable[object]]) -> None:
        logger.info(f"Resuming {name} on {self.registry.active_url}")
        try:
            await command()
        except WalletError as e:
            logger.error(f"Resumed {name} failed: {e.message}")
        except Exception as e:
            logger.exception(f"Resumed {name} crashed: {type(e).__name__}: {str(e)}")

    async def wait_pending(self) -> None:
        """Wait for resumed continuations to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Wallet handles

    async def _wallet_for(self, mint_url: str) -> WalletHandle:
        self._require_ready()
        handle = self.handles.get(mint_url)
        if handle is not None:
            return handle
        seed = await self.vault.retrieve_seed()
        if not seed:
            raise ValidationError("Please create a wallet first")
        return await self.handles.get_or_create(mint_url, seed)

    async def _open_wallet(self, mint_url: str, seed: str, restore: bool) -> WalletStatus:
        await self.handles.get_or_create(mint_url, seed, restore=restore)
        try:
            balance = await self.balances.sync(mint_url)
        except WalletError as e:
            logger.warning(f"Balance retrieval failed, using cached value: {e.message}")
            balance = self.balances.get_cached(mint_url)
        return WalletStatus(mint_url=mint_url, balance=balance, restored=restore)

    async def has_wallet(self) -> bool:
        self._require_ready()
        return await self.vault.has_seed()

    # Wallet lifecycle

    async def create_wallet(self) -> Optional[WalletStatus]:
        self._require_ready()
        mint_url = self.registry.active_url
        if not mint_url:
            return self._defer("create_wallet", self.create_wallet)

        seed = await self.vault.retrieve_seed()
        generated = not seed
        if generated:
            seed = self.vault.generate_seed()
            if self._backup_mnemonic is not None:
                result = self._backup_mnemonic(seed)
                if inspect.isawaitable(result):
                    await result
            if not await self.vault.store_seed(seed):
                logger.warning("Failed to store seed phrase securely, continuing with wallet creation")
            self.handles.invalidate_all()

        if self.handles.has_database(mint_url):
            # Opening an existing database must not shadow the funds in it
            if generated:
                logger.warning(
                    f"Wallet database for {mint_url} exists but no seed was stored, "
                    "restoring it with the new seed"
                )
            else:
                logger.info(f"Existing wallet found for {mint_url}, restoring")
            try:
                status = await self._open_wallet(mint_url, seed, restore=True)
                logger.info(f"Wallet restored! Balance: {format_sats(status.balance)}")
                return status
            except WalletError as e:
                logger.warning(f"Existing wallet found but failed to restore: {e.message}")
                self.handles.invalidate(mint_url)

        status = await self._open_wallet(mint_url, seed, restore=False)
        logger.info(f"Wallet created for {mint_url}")
        return status

    async def recover_wallet(self, mnemonic: str) -> Optional[WalletStatus]:
        self._require_ready()
        mnemonic = " ".join((mnemonic or "").split())
        if not self.vault.validate_mnemonic(mnemonic):
            raise ValidationError("Invalid recovery phrase")
        mint_url = self.registry.active_url
        if not mint_url:
            return self._defer("recover_wallet", lambda: self.recover_wallet(mnemonic))

        if not await self.vault.store_seed(mnemonic):
            logger.warning(
                "Failed to securely store seed phrase. The wallet will still be recovered, "
                "back up the seed phrase manually"
            )
        # The seed changed: every handle, quote and balance derived from the old one is stale
        await self.poller.reset()
        self.handles.invalidate_all()
        await self.balances.clear()

        status = await self._open_wallet(mint_url, mnemonic, restore=True)
        logger.info(f"Wallet recovered on {mint_url}: {format_sats(status.balance)}")
        return status

    # Receive

    async def receive(self, amount: int, memo: Optional[str] = None) -> Optional[Quote]:
        self._require_ready()
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Please enter a valid amount")
        mint_url = self.registry.active_url
        if not mint_url:
            return self._defer("receive", lambda: self.receive(amount, memo))

        wallet = await self._wallet_for(mint_url)
        quote = await self.poller.create_quote(wallet, amount, memo or self.settings.default_memo)
        self.poller.start_polling(quote, wallet)
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        self._require_ready()
        poller = self.poller.get(quote_id)
        if poller is None:
            raise QuoteError(f"Unknown quote {quote_id}")
        return poller.quote

    async def check_receive(self, quote_id: str) -> Quote:
        self.get_quote(quote_id)
        return await self.poller.check_once(quote_id)

    async def cancel_receive(self, quote_id: str) -> Quote:
        self.get_quote(quote_id)
        return await self.poller.cancel(quote_id)

    # Send

    async def prepare_send(self, invoice: str) -> Optional[PreparedPayment]:
        self._require_ready()
        mint_url = self.registry.active_url
        if not mint_url:
            return self._defer("prepare_send", lambda: self.prepare_send(invoice))
        wallet = await self._wallet_for(mint_url)
        return await self.executor.prepare(wallet, invoice)

    async def send(
        self, invoice: str, confirm: Optional[ConfirmCallback] = None
    ) -> Optional[MeltResult]:
        self._require_ready()
        mint_url = self.registry.active_url
        if not mint_url:
            return self._defer("send", lambda: self.send(invoice, confirm))
        try:
            return await self.executor.send(mint_url, invoice, confirm or self._confirm_payment)
        except ConcurrencyRejected:
            logger.info("Payment already in progress, ignoring duplicate call")
            return None

    # Balances

    def get_balance(self, mint_url: Optional[str] = None) -> int:
        return self.balances.get_cached(mint_url or self.registry.active_url)

    def total_balance(self) -> int:
        return sum(self.balances.get_cached(url) for url in self.registry.list())

    async def refresh_balance(self, mint_url: Optional[str] = None) -> Optional[int]:
        self._require_ready()
        if mint_url is None:
            mint_url = self.registry.active_url
            if not mint_url:
                return self._defer("refresh_balance", self.refresh_balance)
        return await self.balances.sync(mint_url)

    async def refresh_all_balances(self) -> Dict[str, int]:
        self._require_ready()
        urls = self.registry.list()
        results = await asyncio.gather(
            *(self.balances.sync(url) for url in urls), return_exceptions=True
        )
        balances = {}
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to sync balance for {url}: {result}")
                continue
            balances[url] = result
        return balances

    # Mints

    @property
    def active_mint(self) -> str:
        return self.registry.active_url

    def list_mints(self) -> List[Mint]:
        return self.registry.mints()

    async def add_mint(self, url: str) -> List[Mint]:
        self._require_ready()
        await self.registry.add(url)
        self._resume_pending()
        return self.registry.mints()

    async def set_active_mint(self, url: str) -> bool:
        self._require_ready()
        changed = await self.registry.set_active(url)
        if changed:
            self._resume_pending()
        return changed

    async def remove_mint(self, url: str) -> None:
        self._require_ready()
        await self.registry.remove(url)
        self.handles.invalidate(url)

    async def clear_mints(self) -> None:
        self._require_ready()
        await self.registry.clear()
        self.handles.invalidate_all()
