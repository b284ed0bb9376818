import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

from cashuwallet.db import Database
from cashuwallet.events import Notifier
from cashuwallet.migrations import run_migrations
from cashuwallet.orchestrator import WalletOrchestrator
from cashuwallet.settings import WalletSettings

VALID_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
GENERATED_MNEMONIC = "legal winner thank year wave sausage worth useful legal winner thank yellow"
INVOICE = "lnbc1000n1pjfakeinvoice"


class FakeAmount:
    def __init__(self, value):
        self.value = value


class FakeNativeWallet:
    """Stands in for the native wallet object of one mint."""

    def __init__(self, mint_url):
        self.mint_url = mint_url
        self.balance_value = 0
        self.balance_errors = 0
        self.quote_states = {}
        self.quote_amounts = {}
        self.mint_calls = []
        self.mint_errors = 0
        self.melt_calls = []
        self.melt_amount = 100
        self.melt_fee = 2
        self.melt_error = None
        self._quotes = 0

    def balance(self):
        if self.balance_errors:
            self.balance_errors -= 1
            raise ConnectionError("mint unreachable")
        return FakeAmount(self.balance_value)

    async def mint_quote(self, amount, memo):
        self._quotes += 1
        quote_id = f"quote-{self._quotes}"
        self.quote_states.setdefault(quote_id, ["Unpaid"])
        self.quote_amounts[quote_id] = amount
        return SimpleNamespace(id=quote_id, request=f"lnbc{amount}n1pfake{self._quotes}")

    async def mint_quote_state(self, quote_id):
        states = self.quote_states[quote_id]
        state = states.pop(0) if len(states) > 1 else states[0]
        await asyncio.sleep(0)
        return SimpleNamespace(state=state)

    async def mint(self, quote_id, split_target):
        self.mint_calls.append(quote_id)
        await asyncio.sleep(0.01)
        if self.mint_errors:
            self.mint_errors -= 1
            raise RuntimeError("keyset unavailable")
        amount = self.quote_amounts[quote_id]
        self.balance_value += amount
        self.quote_states[quote_id] = ["Issued"]
        return FakeAmount(amount)

    async def melt_quote(self, invoice):
        return SimpleNamespace(
            id=f"melt-{len(self.melt_calls) + 1}",
            amount=FakeAmount(self.melt_amount),
            fee_reserve=FakeAmount(self.melt_fee),
        )

    async def melt(self, quote_id):
        self.melt_calls.append(quote_id)
        await asyncio.sleep(0.01)
        if self.melt_error is not None:
            raise self.melt_error
        self.balance_value -= self.melt_amount
        return SimpleNamespace(preimage="ab" * 32)


class FakeBackend:
    """In-process replacement for the native wallet module."""

    def __init__(self):
        self.wallets = {}
        self.created = []
        self.restored = []
        self.fail_store = None
        self.fail_memory = None
        self.fail_wallet = None

    def native(self, mint_url):
        return self.wallets.setdefault(mint_url, FakeNativeWallet(mint_url))

    def open_store(self, path):
        if self.fail_store:
            raise RuntimeError(self.fail_store)
        Path(path).touch()
        return SimpleNamespace(path=path)

    def memory_store(self):
        if self.fail_memory:
            raise RuntimeError(self.fail_memory)
        return SimpleNamespace(path=None)

    def create_wallet(self, mint_url, unit, store, seed):
        if self.fail_wallet:
            raise RuntimeError(self.fail_wallet)
        self.created.append((mint_url, seed))
        return self.native(mint_url)

    def restore_wallet(self, mint_url, unit, store, seed):
        if self.fail_wallet:
            raise RuntimeError(self.fail_wallet)
        self.restored.append((mint_url, seed))
        return self.native(mint_url)

    def generate_mnemonic(self):
        return GENERATED_MNEMONIC


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings(tmp_path):
    return WalletSettings(data_dir=tmp_path, log_level="DEBUG")


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite3'}")
    await run_migrations(database)
    yield database
    await database.close()


@pytest.fixture
def notifier():
    return Notifier()


@pytest_asyncio.fixture
async def orchestrator(settings, backend):
    orch = WalletOrchestrator(settings, backend=backend)
    await orch.init()
    # Keep polling fast in tests
    orch.poller.interval = 0.01
    yield orch
    await orch.dispose()
