import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

# --- Imports ---
from orb_ledger.config import Settings, load_settings
from orb_ledger.core.entities.balance import BalanceRequest, BalanceSnapshot, TokenSummary
from orb_ledger.core.entities.processed import ProcessedTransaction
from orb_ledger.core.entities.transaction import RawTransaction
from orb_ledger.core.exceptions import (
    LedgerEmptyError,
    LedgerPersistenceError,
    TokenListError,
    TransactionSourceError,
)
from orb_ledger.core.interfaces.datasource import ILedgerStorage
from orb_ledger.core.ledger_store import encode_ledger
from orb_ledger.core.services import SyncResult, TransactionHistoryService
from orb_ledger.infrastructure.cache.redis_service import RedisLedgerStorage
from orb_ledger.infrastructure.gateways.helius_api import HeliusGateway
from orb_ledger.infrastructure.gateways.jupiter_api import JupiterTokenListGateway
from orb_ledger.infrastructure.persistence.memory_storage import InMemoryLedgerStorage
from orb_ledger.infrastructure.persistence.postgres_repo import PostgresLedgerRepo

settings = load_settings()

# Setup Logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger("OrbLedger")


# --- Wiring ---

def build_storage(settings: Settings) -> ILedgerStorage:
    backend = settings.storage_backend
    logger.info(f"Using {backend} ledger storage")
    if backend == "postgres":
        return PostgresLedgerRepo(settings.database_url)
    if backend == "redis":
        return RedisLedgerStorage(settings.redis_url)
    return InMemoryLedgerStorage()


def build_service(settings: Settings) -> TransactionHistoryService:
    gateway = HeliusGateway(
        api_key=settings.helius_api_key,
        rest_url=settings.helius_rest_url,
        rpc_url=settings.helius_rpc_url,
        timeout=settings.http_timeout_s,
    )
    token_list = JupiterTokenListGateway(url=settings.jupiter_tokens_url, timeout=settings.http_timeout_s)
    return TransactionHistoryService(gateway, build_storage(settings), token_list, settings)


_service: Optional[TransactionHistoryService] = None


def get_service() -> TransactionHistoryService:
    global _service
    if _service is None:
        _service = build_service(settings)
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_service()
    await service.startup()
    yield
    await service.shutdown()


app = FastAPI(
    title="Orb Ledger API",
    version="1.0.0",
    description="Wallet transaction ledger sync & point-in-time balance reconstruction",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Mapping ---

@app.exception_handler(TransactionSourceError)
async def transaction_source_error(request: Request, exc: TransactionSourceError):
    return JSONResponse(status_code=502, content={"detail": str(exc), "upstream_status": exc.status_code})


@app.exception_handler(TokenListError)
async def token_list_error(request: Request, exc: TokenListError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(LedgerPersistenceError)
async def persistence_error(request: Request, exc: LedgerPersistenceError):
    return JSONResponse(status_code=503, content={"detail": f"Ledger storage unavailable: {exc}"})


@app.exception_handler(LedgerEmptyError)
async def ledger_empty_error(request: Request, exc: LedgerEmptyError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# --- Endpoints ---

@app.get("/health")
async def health(service: TransactionHistoryService = Depends(get_service)):
    return {
        "status": "healthy",
        "storage": service.settings.storage_backend,
        "transactions": await service.transaction_count(),
        "polling": service.poller.is_running,
    }


@app.get("/v1/transactions", response_model=List[RawTransaction])
async def get_transactions(
    limit: Optional[int] = Query(None, ge=1, description="Max transactions, newest first"),
    service: TransactionHistoryService = Depends(get_service),
):
    transactions = await service.get_transactions()
    return transactions[:limit] if limit else transactions


@app.get("/v1/transactions/processed", response_model=List[ProcessedTransaction])
async def get_processed_transactions(
    wallet: Optional[str] = Query(None, description="Wallet address (defaults to each fee payer)"),
    limit: Optional[int] = Query(None, ge=1),
    service: TransactionHistoryService = Depends(get_service),
):
    return await service.get_processed_transactions(wallet, limit)


@app.get("/v1/transactions/stream")
async def stream_transactions(
    request: Request,
    max_events: Optional[int] = Query(None, ge=1, alias="maxEvents"),
    service: TransactionHistoryService = Depends(get_service),
):
    """
    Server-sent events: the current ledger right away, then the full ledger
    after every successful merge or reset.
    """
    await service.store.ensure_loaded()
    subscription = service.subscribe()

    async def events():
        sent = 0
        async with subscription:
            async for snapshot in subscription:
                yield f"event: ledger\ndata: {encode_ledger(snapshot)}\n\n"
                sent += 1
                if max_events is not None and sent >= max_events:
                    break
                if await request.is_disconnected():
                    break

    return StreamingResponse(events(), media_type="text/event-stream")


@app.get("/v1/tokens", response_model=List[TokenSummary])
async def get_tokens(service: TransactionHistoryService = Depends(get_service)):
    tokens = []
    for mint in await service.get_unique_tokens():
        tokens.append(TokenSummary(
            mint=mint,
            symbol=await service.resolver.symbol_for(mint),
            icon_url=await service.resolver.icon_for(mint),
            decimals=await service.resolver.decimals_for(mint),
            verified=await service.resolver.is_verified(mint),
        ))
    return tokens


async def _init_timestamp(service: TransactionHistoryService, wallet: str, init_timestamp: Optional[int]) -> int:
    if init_timestamp is not None:
        return init_timestamp
    return await service.resolve_init_timestamp(wallet)


@app.post("/v1/sync/initial")
async def sync_initial(
    wallet: str = Query(..., description="Wallet address"),
    initTimestamp: Optional[int] = Query(None, description="Unix seconds; first transaction when omitted"),
    service: TransactionHistoryService = Depends(get_service),
):
    """
    Full backward fetch from now to initTimestamp. Returns immediately with
    fetched=0 when another sync is already running.
    """
    init_ts = await _init_timestamp(service, wallet, initTimestamp)
    fetched = await service.fetch_initial_history(wallet, init_ts)
    return {
        "status": "success",
        "initTimestamp": init_ts,
        "fetched": fetched,
        "total": await service.transaction_count(),
    }


@app.post("/v1/sync", response_model=SyncResult)
async def sync_incremental(
    wallet: str = Query(..., description="Wallet address"),
    initTimestamp: Optional[int] = Query(None),
    service: TransactionHistoryService = Depends(get_service),
):
    init_ts = await _init_timestamp(service, wallet, initTimestamp)
    return await service.fetch_new_transactions(wallet, init_ts)


@app.post("/v1/poller/start")
async def start_poller(
    wallet: str = Query(..., description="Wallet address"),
    service: TransactionHistoryService = Depends(get_service),
):
    started = await service.start_polling(wallet)
    return {"status": "started" if started else "already_running"}


@app.post("/v1/poller/stop")
async def stop_poller(service: TransactionHistoryService = Depends(get_service)):
    await service.stop_polling()
    return {"status": "stopped"}


@app.get("/v1/balances/at", response_model=BalanceSnapshot)
async def get_balances_at(
    wallet: str = Query(..., description="Wallet address"),
    timestamp: int = Query(..., description="Unix seconds"),
    service: TransactionHistoryService = Depends(get_service),
):
    return await service.get_balances_at(timestamp, wallet)


@app.post("/v1/balances/at", response_model=BalanceSnapshot)
async def post_balances_at(
    body: BalanceRequest,
    service: TransactionHistoryService = Depends(get_service),
):
    return await service.get_balances_at(body.timestamp, body.wallet, body.current_balances)


@app.get("/v1/balances/history", response_model=List[BalanceSnapshot])
async def get_balance_history(
    wallet: str = Query(..., description="Wallet address"),
    timestamps: List[int] = Query(..., description="Unix seconds, repeatable"),
    service: TransactionHistoryService = Depends(get_service),
):
    return await service.get_balance_history(timestamps, wallet)


@app.delete("/v1/wallet")
async def reset_wallet(service: TransactionHistoryService = Depends(get_service)):
    await service.clear_history()
    return {"status": "cleared"}


def run() -> None:
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
