"""
FastAPI server: exposes risk state, guarded vault operations and the
administrative controls of the sentinel.
"""

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager, suppress
from dataclasses import asdict
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .access_gate import AccessGate
from .config import settings
from .errors import (
    InsufficientBalance,
    InvalidParameter,
    InvalidScore,
    OperationBlocked,
    PriceUnavailable,
    SentinelError,
    SystemPaused,
    Unauthorized,
    UnknownOperation,
)
from .evaluation_trigger import EvaluationTrigger
from .keeper import KeeperLoop
from .models import OperationKind, RiskParams, SentinelSnapshot, TriggerReason
from .price_feed import build_price_feed
from .sentinel import AegisSentinel
from .vault import ProtectedVault

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

ERROR_STATUS: dict[type, int] = {
    OperationBlocked: 423,
    SystemPaused: 423,
    InvalidScore: 400,
    InvalidParameter: 400,
    InsufficientBalance: 400,
    UnknownOperation: 404,
    PriceUnavailable: 503,
    Unauthorized: 401,
}


# ── Models ────────────────────────────────────────────────────────────────────

class OperationStatus(BaseModel):
    id: str
    name: str
    signature: str
    dangerous: bool
    blocked: bool


class AssessmentResponse(BaseModel):
    score: int
    deviation: int
    price_points: int
    burst_points: int
    bursting: list[OperationKind]
    tier: str


class UpkeepResponse(BaseModel):
    needed: bool
    reason: Optional[str] = None
    deviation: Optional[int] = None
    elapsed: float


class OperationRequest(BaseModel):
    account: str
    amount: float = 0.0
    pair: str = "ETH/USD"


class SimulateAttackRequest(BaseModel):
    score: int


class ManualBlockRequest(BaseModel):
    operation: str  # 0x-selector or name
    name: Optional[str] = None
    blocked: bool


class ParamsUpdateRequest(BaseModel):
    price_threshold_pct: Optional[int] = None
    burst_window_seconds: Optional[int] = None
    burst_threshold: Optional[int] = None
    evaluation_interval_seconds: Optional[int] = None


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_sentinel(request: Request) -> AegisSentinel:
    sentinel = request.app.state.sentinel
    if sentinel is None:
        raise HTTPException(status_code=503, detail="Sentinel not initialized")
    return sentinel


def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None),
) -> None:
    expected = request.app.state.admin_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise Unauthorized("administrative capability required")


async def sentinel_error_handler(request: Request, exc: SentinelError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        500,
    )
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


# ── App factory ───────────────────────────────────────────────────────────────

def create_app(
    sentinel: Optional[AegisSentinel] = None,
    vault: Optional[ProtectedVault] = None,
    admin_token: Optional[str] = None,
    start_keeper: Optional[bool] = None,
) -> FastAPI:
    """Build the API. Components not passed in are built from settings on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing sentinel components...")

        feed = None
        if app.state.sentinel is None:
            feed = build_price_feed(settings)
            app.state.sentinel = AegisSentinel(
                feed,
                params=RiskParams.from_settings(settings),
                max_price_age_seconds=settings.max_price_age_seconds,
                history_size=settings.event_history_size,
            )
        s = app.state.sentinel

        if app.state.vault is None:
            app.state.vault = ProtectedVault(AccessGate(s))
        app.state.trigger = EvaluationTrigger(s)

        loop_task = None
        run_keeper = settings.keeper_enabled if start_keeper is None else start_keeper
        if run_keeper:
            app.state.keeper = KeeperLoop(app.state.trigger, settings.poll_interval_seconds)
            loop_task = asyncio.create_task(app.state.keeper.start())
            app.state.keeper_task = loop_task
            logger.info("Keeper loop started")

        yield

        # Cleanup
        if app.state.keeper:
            await app.state.keeper.stop()
        if loop_task:
            loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await loop_task
        if feed is not None:
            feed.close()

        logger.info("Sentinel components shut down")

    app = FastAPI(
        title="Aegis Sentinel API",
        version=VERSION,
        description="Risk-gated admission control for sensitive vault operations",
        lifespan=lifespan,
    )
    app.state.sentinel = sentinel
    app.state.vault = vault
    app.state.keeper = None
    app.state.keeper_task = None
    app.state.trigger = None
    app.state.admin_token = settings.admin_token if admin_token is None else admin_token

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SentinelError, sentinel_error_handler)
    _register_routes(app)
    return app


def _assessment_response(sentinel: AegisSentinel, assessment) -> AssessmentResponse:
    return AssessmentResponse(
        score=assessment.score,
        deviation=assessment.deviation,
        price_points=assessment.price_points,
        burst_points=assessment.burst_points,
        bursting=assessment.bursting,
        tier=sentinel.policy.tier_for(assessment.score).value,
    )


# ── Routes ────────────────────────────────────────────────────────────────────

def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "aegis-sentinel", "version": VERSION}

    @app.get("/risk", response_model=SentinelSnapshot)
    async def get_risk(sentinel: AegisSentinel = Depends(get_sentinel)):
        """Current score, tier and block set."""
        return sentinel.snapshot()

    @app.get("/operations", response_model=list[OperationStatus])
    async def get_operations(sentinel: AegisSentinel = Depends(get_sentinel)):
        blocked = sentinel.block_set()
        return [
            OperationStatus(
                id=kind.selector_hex,
                name=kind.label,
                signature=kind.signature,
                dangerous=kind.dangerous,
                blocked=blocked[kind],
            )
            for kind in OperationKind
        ]

    @app.get("/events")
    async def get_events(limit: int = 50, sentinel: AegisSentinel = Depends(get_sentinel)):
        return [event.model_dump(mode="json") for event in sentinel.events(limit)]

    @app.get("/upkeep", response_model=UpkeepResponse)
    def get_upkeep(request: Request):
        """Read-only due-check, as a host scheduler would poll it."""
        if request.app.state.trigger is None:
            raise HTTPException(status_code=503, detail="Trigger not initialized")
        check = request.app.state.trigger.check_upkeep()
        return UpkeepResponse(
            needed=check.needed,
            reason=check.reason,
            deviation=check.deviation,
            elapsed=check.elapsed,
        )

    @app.get("/keeper/status")
    async def get_keeper_status(request: Request):
        keeper = request.app.state.keeper
        return keeper.get_stats() if keeper else {"running": False}

    @app.get("/vault/{account}")
    async def get_account(account: str, request: Request):
        vault: ProtectedVault = request.app.state.vault
        return {
            "account": account,
            "balance": vault.balance_of(account),
            "debt": vault.debt_of(account),
            "total_deposits": vault.total_deposits,
            "paused": vault.paused,
            "activity": [asdict(e) for e in vault.activity(account)],
        }

    @app.post("/operations/{name}")
    def run_operation(name: str, req: OperationRequest, request: Request):
        """Execute a guarded vault operation."""
        kind = OperationKind.resolve(name)
        vault: ProtectedVault = request.app.state.vault
        try:
            if kind is OperationKind.DEPOSIT:
                result: Any = vault.deposit(req.account, req.amount)
            elif kind is OperationKind.WITHDRAW:
                result = vault.withdraw(req.account, req.amount)
            elif kind is OperationKind.TRADE:
                result = vault.trade(req.account, req.pair, req.amount)
            elif kind is OperationKind.BORROW:
                result = vault.borrow(req.account, req.amount)
            elif kind is OperationKind.REPAY:
                result = vault.repay(req.account, req.amount)
            else:
                result = vault.liquidate(req.account)
        except SentinelError:
            raise
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"operation": kind.label, "result": result}

    # ── Admin ─────────────────────────────────────────────────────────────────

    @app.post("/admin/analyze", response_model=AssessmentResponse, dependencies=[Depends(require_admin)])
    def manual_analyze(sentinel: AegisSentinel = Depends(get_sentinel)):
        """Manually trigger a full analysis (admin)."""
        assessment = sentinel.analyze(trigger=TriggerReason.MANUAL)
        return _assessment_response(sentinel, assessment)

    @app.post("/admin/simulate-attack", response_model=SentinelSnapshot, dependencies=[Depends(require_admin)])
    def simulate_attack(req: SimulateAttackRequest, sentinel: AegisSentinel = Depends(get_sentinel)):
        sentinel.simulate_attack(req.score)
        return sentinel.snapshot()

    @app.post("/admin/reset", response_model=SentinelSnapshot, dependencies=[Depends(require_admin)])
    def reset_risk(sentinel: AegisSentinel = Depends(get_sentinel)):
        sentinel.reset_risk()
        return sentinel.snapshot()

    @app.post("/admin/block", dependencies=[Depends(require_admin)])
    def set_blocked(req: ManualBlockRequest, sentinel: AegisSentinel = Depends(get_sentinel)):
        kind = OperationKind.resolve(req.operation)
        sentinel.set_blocked_manually(kind, req.name, req.blocked)
        return {"operation": kind.label, "blocked": sentinel.is_blocked(kind)}

    @app.post("/admin/params", response_model=RiskParams, dependencies=[Depends(require_admin)])
    def update_params(req: ParamsUpdateRequest, sentinel: AegisSentinel = Depends(get_sentinel)):
        changes = req.model_dump(exclude_none=True)
        if not changes:
            raise InvalidParameter("no parameters given")
        return sentinel.update_params(**changes)

    @app.post("/admin/pause", dependencies=[Depends(require_admin)])
    async def pause(request: Request):
        request.app.state.vault.emergency_pause()
        return {"paused": True}

    @app.post("/admin/unpause", dependencies=[Depends(require_admin)])
    async def unpause(request: Request):
        request.app.state.vault.unpause()
        return {"paused": False}


app = create_app()
