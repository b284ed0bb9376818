import asyncio
from unittest.mock import Mock

import pytest

from cashuwallet.errors import (
    CannotRemoveActiveMint,
    ModuleUnavailableError,
    ValidationError,
)
from cashuwallet.models import MintSelectionRequired, QuoteState
from cashuwallet.orchestrator import WalletOrchestrator

from .conftest import GENERATED_MNEMONIC, INVOICE, VALID_MNEMONIC


@pytest.mark.asyncio
async def test_create_wallet_generates_and_stores_seed(settings, backend):
    backup = Mock()
    orch = WalletOrchestrator(settings, backend=backend, backup_mnemonic=backup)
    await orch.init()
    try:
        await orch.add_mint("https://a")
        backend.native("https://a").balance_value = 7

        status = await orch.create_wallet()

        backup.assert_called_once_with(GENERATED_MNEMONIC)
        assert await orch.vault.retrieve_seed() == GENERATED_MNEMONIC
        assert status.mint_url == "https://a"
        assert status.balance == 7
        assert status.restored is False
        assert orch.get_balance() == 7
        assert await orch.has_wallet()
    finally:
        await orch.dispose()


@pytest.mark.asyncio
async def test_create_wallet_restores_existing_database(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.create_wallet()
    orchestrator.handles.invalidate_all()

    status = await orchestrator.create_wallet()

    assert status.restored is True
    assert backend.restored == [("https://a", GENERATED_MNEMONIC)]
    assert await orchestrator.vault.retrieve_seed() == GENERATED_MNEMONIC


@pytest.mark.asyncio
async def test_new_mint_reuses_stored_seed(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.add_mint("https://b")
    await orchestrator.create_wallet()

    await orchestrator.set_active_mint("https://b")
    await orchestrator.create_wallet()

    assert [seed for _, seed in backend.created] == [GENERATED_MNEMONIC, GENERATED_MNEMONIC]


@pytest.mark.asyncio
async def test_command_without_mint_resumes_after_selection(orchestrator, backend):
    events = []
    orchestrator.notifier.subscribe(events.append)

    assert await orchestrator.create_wallet() is None
    assert orchestrator.pending_command == "create_wallet"
    assert MintSelectionRequired(command="create_wallet") in events
    assert backend.created == []

    await orchestrator.add_mint("https://a")
    await orchestrator.wait_pending()

    assert orchestrator.pending_command is None
    assert backend.created == [("https://a", GENERATED_MNEMONIC)]


@pytest.mark.asyncio
async def test_cancel_pending_drops_continuation(orchestrator, backend):
    await orchestrator.create_wallet()
    orchestrator.cancel_pending()

    await orchestrator.add_mint("https://a")
    await orchestrator.wait_pending()

    assert backend.created == []


@pytest.mark.asyncio
async def test_recover_wallet_replaces_seed_and_invalidates(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.add_mint("https://b")
    await orchestrator.create_wallet()
    await orchestrator.balances.update("https://b", 99)
    old_handle = orchestrator.handles.get("https://a")
    backend.native("https://a").balance_value = 1234

    status = await orchestrator.recover_wallet(VALID_MNEMONIC)

    assert status.restored is True
    assert status.balance == 1234
    assert await orchestrator.vault.retrieve_seed() == VALID_MNEMONIC
    assert orchestrator.handles.get("https://a") is not old_handle
    assert orchestrator.get_balance("https://b") == 0
    assert backend.restored[-1] == ("https://a", VALID_MNEMONIC)


@pytest.mark.asyncio
async def test_recover_wallet_rejects_invalid_phrase(orchestrator):
    await orchestrator.add_mint("https://a")

    with pytest.raises(ValidationError):
        await orchestrator.recover_wallet("definitely not a seed phrase")


@pytest.mark.asyncio
async def test_receive_credits_active_mint(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.create_wallet()
    native = backend.native("https://a")

    quote = await orchestrator.receive(100)
    native.quote_states[quote.id] = ["Unpaid", "Unpaid", "Unpaid", "Paid"]
    await orchestrator.poller.get(quote.id).wait(timeout=5)

    assert quote.memo == "Cashu wallet receive"
    assert orchestrator.get_quote(quote.id).state == QuoteState.ISSUED
    assert orchestrator.get_balance("https://a") == 100
    assert native.mint_calls == [quote.id]


@pytest.mark.asyncio
async def test_receive_requires_wallet(orchestrator):
    await orchestrator.add_mint("https://a")

    with pytest.raises(ValidationError):
        await orchestrator.receive(10)


@pytest.mark.asyncio
async def test_cancel_receive(orchestrator):
    await orchestrator.add_mint("https://a")
    await orchestrator.create_wallet()
    quote = await orchestrator.receive(10)

    cancelled = await orchestrator.cancel_receive(quote.id)

    assert cancelled.state == QuoteState.CANCELLED
    assert not orchestrator.poller.get(quote.id).running


@pytest.mark.asyncio
async def test_concurrent_sends_melt_once(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.create_wallet()
    await orchestrator.balances.update("https://a", 500)
    native = backend.native("https://a")

    first, second = await asyncio.gather(
        orchestrator.send(INVOICE), orchestrator.send(INVOICE)
    )

    assert len(native.melt_calls) == 1
    assert [first is None, second is None].count(True) == 1
    assert orchestrator.get_balance("https://a") == 400


@pytest.mark.asyncio
async def test_remove_active_mint_is_rejected(orchestrator):
    await orchestrator.add_mint("https://a")
    await orchestrator.add_mint("https://b")

    with pytest.raises(CannotRemoveActiveMint):
        await orchestrator.remove_mint("https://a")

    assert [m.url for m in orchestrator.list_mints()] == ["https://a", "https://b"]
    assert orchestrator.active_mint == "https://a"


@pytest.mark.asyncio
async def test_remove_mint_drops_handle(orchestrator):
    await orchestrator.add_mint("https://a")
    await orchestrator.add_mint("https://b")
    await orchestrator.create_wallet()
    await orchestrator.refresh_balance("https://b")
    assert orchestrator.handles.get("https://b") is not None

    await orchestrator.remove_mint("https://b")

    assert orchestrator.handles.get("https://b") is None


@pytest.mark.asyncio
async def test_refresh_all_balances_skips_failures(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.add_mint("https://b")
    await orchestrator.create_wallet()
    backend.native("https://a").balance_value = 10
    backend.native("https://b").balance_value = 20
    backend.native("https://b").balance_errors = 1

    balances = await orchestrator.refresh_all_balances()

    assert balances == {"https://a": 10}
    assert orchestrator.total_balance() == 10


@pytest.mark.asyncio
async def test_first_persisted_mint_is_active_after_restart(settings, backend):
    first = WalletOrchestrator(settings, backend=backend)
    await first.init()
    await first.add_mint("https://a")
    await first.add_mint("https://b")
    await first.dispose()

    second = WalletOrchestrator(settings, backend=backend)
    await second.init()
    try:
        assert second.active_mint == "https://a"
        assert [m.url for m in second.list_mints()] == ["https://a", "https://b"]
    finally:
        await second.dispose()


@pytest.mark.asyncio
async def test_missing_native_module_is_fatal(settings):
    settings.backend_module = "cashuwallet_missing_native_module"
    orch = WalletOrchestrator(settings)

    with pytest.raises(ModuleUnavailableError):
        await orch.init()
    await orch.dispose()


@pytest.mark.asyncio
async def test_commands_before_init_are_rejected(settings, backend):
    orch = WalletOrchestrator(settings, backend=backend)

    with pytest.raises(ModuleUnavailableError):
        await orch.add_mint("https://a")
    await orch.dispose()


@pytest.mark.asyncio
async def test_create_wallet_restores_database_without_stored_seed(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    db_path = orchestrator.handles.db_path("https://a")
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db_path.touch()

    status = await orchestrator.create_wallet()

    assert status.restored is True
    assert backend.created == []
    assert backend.restored == [("https://a", GENERATED_MNEMONIC)]
    assert await orchestrator.vault.retrieve_seed() == GENERATED_MNEMONIC


@pytest.mark.asyncio
async def test_recover_wallet_stops_receive_polling(orchestrator, backend):
    await orchestrator.add_mint("https://a")
    await orchestrator.create_wallet()
    native = backend.native("https://a")
    quote = await orchestrator.receive(10)
    handle = orchestrator.poller.get(quote.id)
    assert handle.running

    await orchestrator.recover_wallet(VALID_MNEMONIC)
    native.quote_states[quote.id] = ["Paid"]
    await asyncio.sleep(0.05)

    assert not handle.running
    assert orchestrator.poller.get(quote.id) is None
    assert native.mint_calls == []
    assert orchestrator.get_balance("https://a") == 0


@pytest.mark.asyncio
async def test_dispose_stops_live_pollers(settings, backend):
    orch = WalletOrchestrator(settings, backend=backend)
    await orch.init()
    await orch.add_mint("https://a")
    await orch.create_wallet()
    quote = await orch.receive(10)
    handle = orch.poller.get(quote.id)
    assert handle.running

    await orch.dispose()

    assert not handle.running
    assert quote.state == QuoteState.UNPAID
