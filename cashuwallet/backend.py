"""
Boundary to the native Cashu wallet capability.

The native binding exposes loosely typed objects: amounts wrapped in
``.value`` holders, quote states as enum members, sync or async methods
depending on the build. Everything crossing this module is normalized
into the explicit models in ``models.py``.
"""

import asyncio
import importlib
import inspect
from typing import Any, Optional, Protocol

from loguru import logger

from .errors import ModuleUnavailableError, QuoteError, translate_error
from .models import MeltQuote, MeltResult, MintQuoteInfo, QuoteState


class WalletBackend(Protocol):
    def create_wallet(self, mint_url: str, unit: str, store: Any, seed: str) -> Any: ...

    def restore_wallet(self, mint_url: str, unit: str, store: Any, seed: str) -> Any: ...

    def open_store(self, path: str) -> Any: ...

    def memory_store(self) -> Any: ...

    def generate_mnemonic(self) -> str: ...


class ModuleBackend:
    """Adapts the FFI classes of a native binding module to WalletBackend."""

    REQUIRED = ("FfiWallet", "FfiLocalStore", "FfiCurrencyUnit", "generate_mnemonic")

    def __init__(self, module: Any):
        missing = [name for name in self.REQUIRED if not hasattr(module, name)]
        if missing:
            raise ModuleUnavailableError(
                f"Wallet module {module.__name__} is missing: {', '.join(missing)}"
            )
        self.module = module
        self.split_target = getattr(getattr(module, "FfiSplitTarget", None), "DEFAULT", None)

    def _unit(self, unit: str) -> Any:
        return getattr(self.module.FfiCurrencyUnit, unit.upper(), unit)

    def create_wallet(self, mint_url: str, unit: str, store: Any, seed: str) -> Any:
        return self.module.FfiWallet.from_mnemonic(mint_url, self._unit(unit), store, seed)

    def restore_wallet(self, mint_url: str, unit: str, store: Any, seed: str) -> Any:
        return self.module.FfiWallet.restore_from_mnemonic(
            mint_url, self._unit(unit), store, seed
        )

    def open_store(self, path: str) -> Any:
        return self.module.FfiLocalStore.new_with_path(path)

    def memory_store(self) -> Any:
        return self.module.FfiLocalStore()

    def generate_mnemonic(self) -> str:
        return self.module.generate_mnemonic()


def load_backend(module_name: str) -> ModuleBackend:
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        logger.error(f"Wallet module {module_name} could not be loaded: {e}")
        raise ModuleUnavailableError(
            f"Wallet module {module_name} is not available: {e}"
        ) from e
    backend = ModuleBackend(module)
    logger.info(f"Wallet module {module_name} loaded")
    return backend


def amount_value(amount: Any) -> int:
    """Read an integer amount from a native Amount holder or a plain number."""
    if amount is None:
        return 0
    value = getattr(amount, "value", amount)
    return int(value)


def parse_quote_state(state: Any) -> QuoteState:
    raw = getattr(state, "state", state)
    name = str(getattr(raw, "name", raw)).rsplit(".", 1)[-1].lower()
    for candidate in QuoteState:
        if candidate.value.lower() == name:
            return candidate
    logger.debug(f"Unknown mint quote state {raw!r}, treating as unpaid")
    return QuoteState.UNPAID


class WalletHandle:
    """A native wallet bound to one mint URL and the current seed."""

    def __init__(self, native: Any, mint_url: str, db_path: Optional[str] = None):
        self.native = native
        self.mint_url = mint_url
        self.db_path = db_path

    def __repr__(self) -> str:
        return f"WalletHandle({self.mint_url!r})"

    async def _call(self, method: str, *args: Any) -> Any:
        func = getattr(self.native, method, None)
        if not callable(func):
            raise QuoteError(f"{method} is not supported by this wallet version")
        try:
            if inspect.iscoroutinefunction(func):
                return await func(*args)
            # Blocking FFI calls must not stall pollers sharing the loop
            result = await asyncio.to_thread(func, *args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.error(f"{method} on {self.mint_url} failed: {type(e).__name__}: {str(e)}")
            raise translate_error(e, method) from e

    async def balance(self) -> int:
        return amount_value(await self._call("balance"))

    async def mint_quote(self, amount: int, memo: Optional[str]) -> MintQuoteInfo:
        quote = await self._call("mint_quote", amount, memo)
        return MintQuoteInfo(id=str(quote.id), invoice=str(quote.request))

    async def mint_quote_state(self, quote_id: str) -> QuoteState:
        return parse_quote_state(await self._call("mint_quote_state", quote_id))

    async def mint(self, quote_id: str, split_target: Any = None) -> int:
        return amount_value(await self._call("mint", quote_id, split_target))

    async def melt_quote(self, invoice: str) -> MeltQuote:
        quote = await self._call("melt_quote", invoice)
        return MeltQuote(
            id=str(quote.id),
            amount=amount_value(quote.amount),
            fee_reserve=amount_value(getattr(quote, "fee_reserve", None)),
        )

    async def melt(self, quote_id: str, amount: int = 0) -> MeltResult:
        result = await self._call("melt", quote_id)
        preimage = getattr(result, "preimage", None)
        return MeltResult(
            quote_id=quote_id,
            amount=amount,
            fee_paid=amount_value(getattr(result, "fee_paid", None)),
            preimage=str(preimage) if preimage else None,
        )
