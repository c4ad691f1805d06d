from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from seller_ledger.config import get_settings
from seller_ledger.errors import LedgerError
from seller_ledger.ledger import Ledger
from seller_ledger.logging_config import configure_logging, logger
from seller_ledger.models import (
    Currency,
    KycStatus,
    OrderSettlementRequest,
    TransactionFilters,
    TransactionStatus,
    TransactionType,
)
from seller_ledger.permissions import Actor, require


# ── Request bodies ────────────────────────────────────────────────────────────

class ManualTransactionRequest(BaseModel):
    seller_id: Optional[str] = None
    type: TransactionType
    amount: Decimal
    currency: Currency = Currency.GBP
    description: str = ""
    reference_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class PayoutRequest(BaseModel):
    seller_id: str
    currency: Currency
    idempotency_key: Optional[str] = None


class SellerUpdate(BaseModel):
    kyc_status: KycStatus
    payouts_enabled: bool


class RefundRequest(BaseModel):
    order_id: str
    refund_amount: Decimal
    currency: Currency
    return_id: Optional[str] = None


class TaxRatesUpdate(BaseModel):
    rates: dict[str, Any]


# ── Dependencies ─────────────────────────────────────────────────────────────

def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise HTTPException(401, "X-Actor-Id and X-Actor-Role headers are required")
    return Actor(id=x_actor_id, role=x_actor_role, name=x_actor_name)


router = APIRouter(prefix="/api/v1")


# ── Transactions ─────────────────────────────────────────────────────────────

def _filters(
    seller_id: Optional[str] = None,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    currency: Optional[Currency] = None,
    start_date: Optional[date] = Query(default=None, examples=["2026-01-01"]),
    end_date: Optional[date] = Query(default=None, examples=["2026-01-31"]),
) -> TransactionFilters:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(400, "start_date must not be after end_date")
    return TransactionFilters(seller_id=seller_id, type=type, status=status, currency=currency,
                              start_date=start_date, end_date=end_date)


@router.get("/transactions", summary="List and filter ledger transactions")
def list_transactions(
    filters: TransactionFilters = Depends(_filters),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_actor),
    ledger: Ledger = Depends(get_ledger),
):
    return ledger.list_transactions(actor, filters, limit, offset).model_dump(mode="json")


@router.get("/transactions/export.csv", summary="Export filtered transactions as CSV")
def export_transactions(
    filters: TransactionFilters = Depends(_filters),
    actor: Actor = Depends(get_actor),
    ledger: Ledger = Depends(get_ledger),
):
    body = ledger.export_transactions(actor, filters)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="transactions-export-{date.today()}.csv"'},
    )


@router.get("/transactions/{transaction_id}", summary="Get one transaction")
def get_transaction(transaction_id: str, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.get_transaction(actor, transaction_id).model_dump(mode="json")


@router.post("/transactions", status_code=201, summary="Post a manual fee, adjustment, sale or refund")
def create_transaction(
    body: ManualTransactionRequest,
    actor: Actor = Depends(get_actor),
    ledger: Ledger = Depends(get_ledger),
):
    tx = ledger.create_manual_transaction(
        actor,
        type=body.type,
        amount=body.amount,
        currency=body.currency,
        seller_id=body.seller_id,
        description=body.description,
        reference_id=body.reference_id,
        idempotency_key=body.idempotency_key,
    )
    return tx.model_dump(mode="json")


@router.post("/transactions/{transaction_id}/reverse", status_code=201, summary="Reverse a prior transaction")
def reverse_transaction(transaction_id: str, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.reverse_transaction(actor, transaction_id).model_dump(mode="json")


# ── Payouts / sellers ────────────────────────────────────────────────────────

@router.post("/payouts", status_code=201, summary="Drain a seller's balance in one currency")
def request_payout(body: PayoutRequest, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    payout = ledger.request_payout(actor, body.seller_id, body.currency, body.idempotency_key)
    return payout.model_dump(mode="json")


@router.get("/sellers/{seller_id}/payouts", summary="List a seller's payouts")
def list_payouts(seller_id: str, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return {"payouts": [p.model_dump(mode="json") for p in ledger.list_payouts(actor, seller_id)]}


@router.get("/sellers/{seller_id}/financials", summary="Balances and verification state of a seller")
def get_financials(seller_id: str, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.get_financials(actor, seller_id).model_dump(mode="json")


@router.put("/sellers/{seller_id}", summary="Record seller directory verification state")
def update_seller(
    seller_id: str,
    body: SellerUpdate,
    actor: Actor = Depends(get_actor),
    ledger: Ledger = Depends(get_ledger),
):
    return ledger.upsert_seller(actor, seller_id, body.kyc_status, body.payouts_enabled).model_dump(mode="json")


# ── Order / returns handoff ──────────────────────────────────────────────────

@router.post("/orders/settle", status_code=201, summary="Settle a newly created order")
def settle_order(body: OrderSettlementRequest, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.settle_order(actor, body).model_dump(mode="json")


@router.post("/returns/refund", status_code=201, summary="Record the refund of a completed return")
def record_refund(body: RefundRequest, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    tx = ledger.record_refund(actor, body.order_id, body.refund_amount, body.currency, body.return_id)
    return tx.model_dump(mode="json")


# ── Financials ───────────────────────────────────────────────────────────────

@router.get("/financials/tax-rates", summary="Current tax rate table")
def get_tax_rates(actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.get_tax_rates(actor).model_dump(mode="json")


@router.put("/financials/tax-rates", summary="Update rates in the tax rate table")
def set_tax_rates(body: TaxRatesUpdate, actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    return ledger.set_tax_rates(actor, body.rates).model_dump(mode="json")


@router.get("/financials/summary", summary="Dashboard totals for a date range")
def get_summary(
    start_date: Optional[date] = Query(default=None, examples=["2026-01-01"]),
    end_date: Optional[date] = Query(default=None, examples=["2026-01-31"]),
    seller_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    ledger: Ledger = Depends(get_ledger),
):
    return ledger.summary(actor, start_date, end_date, seller_id).model_dump(mode="json")


# ── Admin ─────────────────────────────────────────────────────────────────────

@router.post("/admin/seed", summary="Re-seed demo data")
def reseed(actor: Actor = Depends(get_actor), ledger: Ledger = Depends(get_ledger)):
    require(actor, "admin:seed")
    from scripts.seed_data import seed
    ledger.store.clear()
    ledger.start()
    seed(ledger)
    return {
        "status": "seeded",
        "sellers": len(ledger.store.list_seller_ids()),
        "transactions": ledger.store.list_transactions().total,
    }


async def _ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(ledger: Optional[Ledger] = None) -> FastAPI:
    settings = ledger.settings if ledger is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        if getattr(app.state, "ledger", None) is None:
            app.state.ledger = Ledger(settings)
        app.state.ledger.start()
        if settings.seed_demo_data:
            from scripts.seed_data import seed
            seed(app.state.ledger)
        yield
        app.state.ledger.close()

    app = FastAPI(
        title="Seller Ledger Service",
        version="1.0.0",
        description="Seller balances, settlements, refunds and payouts for the marketplace",
        lifespan=lifespan,
    )
    app.state.ledger = ledger
    app.add_exception_handler(LedgerError, _ledger_error)
    app.include_router(router)
    return app


app = create_app()
