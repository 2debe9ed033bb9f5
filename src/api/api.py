import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from time import perf_counter
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable, Sequence

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import sessionmaker

from api.dependencies import get_accounting_core
from api.schemas import (
    AutoRunRequest,
    BulkTransactionsRequest,
    CostBasisRequest,
    CreateOrganizationRequest,
    CreateRuleRequest,
    CreateWalletRequest,
)
from config import config
from db.db import create_db_engine
from domain.base_types import OrganizationId
from domain.ledger import (
    DEFAULT_TRANSACTION_PAGE,
    MAX_TRANSACTION_PAGE,
    NewTransaction,
    Organization,
    TransactionQuery,
    Wallet,
)
from domain.rules import ClassificationRule
from services.accounting import AccountingCore
from services.errors import AccountingError, DuplicateTransactionError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

Core = Annotated[AccountingCore, Depends(get_accounting_core)]

ERROR_STATUS: dict[type[AccountingError], int] = {
    NotFoundError: 404,
    InvalidInputError: 400,
    DuplicateTransactionError: 409,
}


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    """Build the API; without ``session_factory`` a SQLite engine is opened from settings on startup."""

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
        if session_factory is not None:
            fastapi_app.state.sessionmaker = session_factory
            yield
            return
        settings = config()
        engine = create_db_engine(settings.db_file, echo=settings.db_echo)
        fastapi_app.state.sessionmaker = sessionmaker(engine)
        yield
        engine.dispose()

    fastapi_app = FastAPI(lifespan=lifespan)
    if session_factory is not None:
        fastapi_app.state.sessionmaker = session_factory

    @fastapi_app.middleware("http")
    async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start_time = perf_counter()
        response = await call_next(request)
        process_time = perf_counter() - start_time
        logger.info("Request time: %s %s: %.4fs", request.method, request.url, process_time)
        return response

    @fastapi_app.exception_handler(AccountingError)
    async def accounting_error(request: Request, exc: AccountingError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        return JSONResponse({"error": str(exc)}, status_code=status)

    @fastapi_app.exception_handler(ValidationError)
    async def model_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse({"error": _describe_errors(exc.errors())}, status_code=400)

    @fastapi_app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": _describe_errors(exc.errors(), skip=1)}, status_code=400)

    fastapi_app.include_router(_routes())
    return fastapi_app


def _describe_errors(errors: Sequence[Any], *, skip: int = 0) -> str:
    # Request errors are located as ("body", field, ...); drop the leading segment.
    fields = sorted({".".join(str(part) for part in error["loc"][skip:]) or "body" for error in errors})
    return f"invalid request: {', '.join(fields)}"


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _dump_all(models: Sequence[BaseModel]) -> list[dict[str, Any]]:
    return [_dump(model) for model in models]


def _routes() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/v1/organizations")
    def list_organizations(core: Core) -> dict[str, Any]:
        return {"items": _dump_all(core.list_organizations())}

    @router.post("/v1/organizations", status_code=201)
    def create_organization(body: CreateOrganizationRequest, core: Core) -> dict[str, Any]:
        organization = core.create_organization(Organization(name=body.name, base_currency=body.base_currency))
        return {"id": organization.id, "name": organization.name}

    @router.get("/v1/wallets")
    def list_wallets(
        core: Core, organization_id: Annotated[str, Query(alias="organizationId")] = ""
    ) -> dict[str, Any]:
        return {"items": _dump_all(core.list_wallets(OrganizationId(organization_id)))}

    @router.post("/v1/wallets", status_code=201)
    def create_wallet(body: CreateWalletRequest, core: Core) -> dict[str, Any]:
        wallet = core.create_wallet(Wallet(**dict(body)))
        return {"id": wallet.id}

    @router.get("/v1/transactions")
    def list_transactions(
        core: Core,
        organization_id: Annotated[str, Query(alias="organizationId")] = "",
        wallet_id: Annotated[str | None, Query(alias="walletId")] = None,
        chain: str | None = None,
        token_symbol: Annotated[str | None, Query(alias="tokenSymbol")] = None,
        direction: str | None = None,
        status: str | None = None,
        occurred_from: Annotated[datetime | None, Query(alias="from")] = None,
        occurred_to: Annotated[datetime | None, Query(alias="to")] = None,
        min_usd: Annotated[Decimal | None, Query(alias="minUsd")] = None,
        max_usd: Annotated[Decimal | None, Query(alias="maxUsd")] = None,
        search: str | None = None,
        limit: Annotated[int, Query(ge=1, le=MAX_TRANSACTION_PAGE)] = DEFAULT_TRANSACTION_PAGE,
    ) -> dict[str, Any]:
        query = TransactionQuery(
            wallet_id=wallet_id,
            chain=chain,
            token_symbol=token_symbol,
            direction=direction,
            status=status,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            min_usd=min_usd,
            max_usd=max_usd,
            search=search,
            limit=limit,
        )
        return {"items": _dump_all(core.list_transactions(OrganizationId(organization_id), query))}

    @router.post("/v1/transactions", status_code=201)
    def create_transaction(body: NewTransaction, core: Core) -> dict[str, Any]:
        transaction = core.ingest_transaction(body)
        return {"id": transaction.id, "classification": transaction.classification}

    @router.post("/v1/transactions/bulk", status_code=201)
    def create_transactions_bulk(body: BulkTransactionsRequest, core: Core) -> dict[str, Any]:
        result = core.ingest_bulk(body.organization_id, body.wallet_id, body.items)
        return _dump(result)

    @router.post("/v1/cost-basis/calculate")
    def calculate_cost_basis(body: CostBasisRequest, core: Core) -> dict[str, Any]:
        summary = core.compute_cost_basis(body.organization_id, body.token_symbol, body.method)
        return {"summary": _dump(summary)}

    @router.get("/v1/reconciliations")
    def list_reconciliations(
        core: Core,
        organization_id: Annotated[str, Query(alias="organizationId")] = "",
        limit: Annotated[int, Query(ge=1, le=300)] = 100,
    ) -> dict[str, Any]:
        return {"items": _dump_all(core.list_reconciliations(OrganizationId(organization_id), limit=limit))}

    @router.post("/v1/reconciliations/auto-run", status_code=201)
    def auto_run_reconciliation(body: AutoRunRequest, core: Core) -> dict[str, Any]:
        run, window = core.auto_run(body.organization_id, body.period_start, body.period_end)
        return {"id": run.id, "status": run.status.value, "summary": _dump(window)}

    @router.get("/v1/rules")
    def list_rules(
        core: Core,
        organization_id: Annotated[str, Query(alias="organizationId")] = "",
        limit: Annotated[int, Query(ge=1, le=300)] = 100,
    ) -> dict[str, Any]:
        return {"items": _dump_all(core.list_rules(OrganizationId(organization_id), limit=limit))}

    @router.post("/v1/rules", status_code=201)
    def create_rule(body: CreateRuleRequest, core: Core) -> dict[str, Any]:
        rule = core.create_rule(ClassificationRule(**dict(body)))
        return {"id": rule.id}

    return router


app = create_app()
