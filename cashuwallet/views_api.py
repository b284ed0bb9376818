from http import HTTPStatus
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from .errors import (
    CannotRemoveActiveMint,
    ModuleUnavailableError,
    QuoteError,
    StorageError,
    ValidationError,
    WalletError,
)
from .models import (
    AddMintData,
    CreateReceiveData,
    RecoverWalletData,
    SendData,
    SetActiveMintData,
)
from .orchestrator import WalletOrchestrator

cashuwallet_api_router = APIRouter()


def get_orchestrator(request: Request) -> WalletOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail="Wallet not initialized"
        )
    return orchestrator


def raise_http(error: WalletError, action: str):
    """Translate a wallet error into an HTTP error for the UI."""
    logger.error(f"Error in {action}: {type(error).__name__}: {error.message}")
    if isinstance(error, CannotRemoveActiveMint):
        status = HTTPStatus.CONFLICT
    elif isinstance(error, ValidationError):
        status = HTTPStatus.BAD_REQUEST
    elif isinstance(error, (ModuleUnavailableError, StorageError)):
        status = HTTPStatus.SERVICE_UNAVAILABLE
    elif isinstance(error, QuoteError):
        status = HTTPStatus.BAD_GATEWAY
    else:
        status = HTTPStatus.INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=status, detail=error.message) from error


def pending_response(orchestrator: WalletOrchestrator) -> dict:
    return {"pending": orchestrator.pending_command, "detail": "Mint selection required"}


#######################################
############### MINTS #################
#######################################


@cashuwallet_api_router.get("/api/v1/mints", status_code=HTTPStatus.OK)
async def api_list_mints(orchestrator: WalletOrchestrator = Depends(get_orchestrator)):
    return [
        {**mint.model_dump(), "balance": orchestrator.get_balance(mint.url)}
        for mint in orchestrator.list_mints()
    ]


@cashuwallet_api_router.post("/api/v1/mints", status_code=HTTPStatus.CREATED)
async def api_add_mint(
    data: AddMintData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        mints = await orchestrator.add_mint(data.url)
    except WalletError as e:
        raise_http(e, "api_add_mint")
    return [mint.model_dump() for mint in mints]


@cashuwallet_api_router.put("/api/v1/mints/active", status_code=HTTPStatus.OK)
async def api_set_active_mint(
    data: SetActiveMintData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        changed = await orchestrator.set_active_mint(data.url)
    except WalletError as e:
        raise_http(e, "api_set_active_mint")
    if not changed:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Mint not found")
    return {"active": orchestrator.active_mint}


@cashuwallet_api_router.delete("/api/v1/mints", status_code=HTTPStatus.NO_CONTENT)
async def api_remove_mint(
    url: str = Query(...), orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        await orchestrator.remove_mint(url)
    except WalletError as e:
        raise_http(e, "api_remove_mint")


#######################################
############### WALLET ################
#######################################


@cashuwallet_api_router.post("/api/v1/wallet", status_code=HTTPStatus.OK)
async def api_create_wallet(orchestrator: WalletOrchestrator = Depends(get_orchestrator)):
    try:
        status = await orchestrator.create_wallet()
    except WalletError as e:
        raise_http(e, "api_create_wallet")
    if status is None:
        return pending_response(orchestrator)
    return status.model_dump()


@cashuwallet_api_router.post("/api/v1/wallet/recover", status_code=HTTPStatus.OK)
async def api_recover_wallet(
    data: RecoverWalletData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        status = await orchestrator.recover_wallet(data.mnemonic)
    except WalletError as e:
        raise_http(e, "api_recover_wallet")
    if status is None:
        return pending_response(orchestrator)
    return status.model_dump()


@cashuwallet_api_router.get("/api/v1/balance", status_code=HTTPStatus.OK)
async def api_get_balance(
    mint_url: Optional[str] = Query(None),
    orchestrator: WalletOrchestrator = Depends(get_orchestrator),
):
    return {
        "mint_url": mint_url or orchestrator.active_mint,
        "balance": orchestrator.get_balance(mint_url),
        "total": orchestrator.total_balance(),
    }


@cashuwallet_api_router.post("/api/v1/balance/refresh", status_code=HTTPStatus.OK)
async def api_refresh_balance(
    mint_url: Optional[str] = Query(None),
    orchestrator: WalletOrchestrator = Depends(get_orchestrator),
):
    try:
        balance = await orchestrator.refresh_balance(mint_url)
    except WalletError as e:
        raise_http(e, "api_refresh_balance")
    if balance is None:
        return pending_response(orchestrator)
    return {"mint_url": mint_url or orchestrator.active_mint, "balance": balance}


#######################################
############### RECEIVE ###############
#######################################


@cashuwallet_api_router.post("/api/v1/receive", status_code=HTTPStatus.CREATED)
async def api_create_receive(
    data: CreateReceiveData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        quote = await orchestrator.receive(data.amount, data.memo)
    except WalletError as e:
        raise_http(e, "api_create_receive")
    if quote is None:
        return pending_response(orchestrator)
    return quote.model_dump()


@cashuwallet_api_router.get("/api/v1/receive/{quote_id}", status_code=HTTPStatus.OK)
async def api_check_receive(
    quote_id: str, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        quote = await orchestrator.check_receive(quote_id)
    except QuoteError as e:
        logger.error(f"Quote not found: {quote_id}")
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=e.message) from e
    return quote.model_dump()


@cashuwallet_api_router.delete("/api/v1/receive/{quote_id}", status_code=HTTPStatus.OK)
async def api_cancel_receive(
    quote_id: str, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        quote = await orchestrator.cancel_receive(quote_id)
    except QuoteError as e:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=e.message) from e
    return quote.model_dump()


#######################################
################ SEND #################
#######################################


@cashuwallet_api_router.post("/api/v1/send/prepare", status_code=HTTPStatus.OK)
async def api_prepare_send(
    data: SendData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)
):
    try:
        prepared = await orchestrator.prepare_send(data.invoice)
    except WalletError as e:
        raise_http(e, "api_prepare_send")
    if prepared is None:
        return pending_response(orchestrator)
    return {**prepared.model_dump(), "total": prepared.total}


@cashuwallet_api_router.post("/api/v1/send", status_code=HTTPStatus.OK)
async def api_send(data: SendData, orchestrator: WalletOrchestrator = Depends(get_orchestrator)):
    # Reaching this endpoint is the user's confirmation of the prepared payment
    try:
        result = await orchestrator.send(data.invoice, confirm=lambda prepared: True)
    except WalletError as e:
        raise_http(e, "api_send")
    if result is None:
        if orchestrator.pending_command:
            return pending_response(orchestrator)
        return {"status": "ignored", "detail": "Payment already in progress"}
    return {"status": "sent", **result.model_dump()}
