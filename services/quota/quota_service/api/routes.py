"""
ABOUTME: FastAPI routes for the quota service
ABOUTME: Gem deduct/reset/status, token tracking, alpha tier switch, account purge
"""

import time

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from quota_service.auth.alpha import AlphaTierSwitcher, validate_alpha_code
from quota_service.auth.middleware import require_auth, resolve_target_user
from quota_service.auth.models import User
from quota_service.config import settings
from quota_service.core.accounting import UsageAccountant, gems_from_tokens
from quota_service.core.reset import ResetScheduler
from quota_service.db.models import (
    AlphaCodeRequest,
    AlphaCodeResponse,
    AlphaTierSwitchRequest,
    ChargeRequest,
    ChargeResult,
    DeductRequest,
    DeductResult,
    GemStatus,
    PurgeResult,
    ResetRequest,
    ResetResult,
    TokenStatus,
    TrackRequest,
    TrackResult,
)
from quota_service.db.store import QuotaStore, get_quota_store
from quota_service.exceptions import QuotaExhaustedError
from quota_service.utils.logging import log_request, logger

router = APIRouter()


# Dependencies


def get_store() -> QuotaStore:
    return get_quota_store()


def get_scheduler(store: QuotaStore = Depends(get_store)) -> ResetScheduler:
    return ResetScheduler(store)


def get_accountant(
    store: QuotaStore = Depends(get_store),
    scheduler: ResetScheduler = Depends(get_scheduler),
) -> UsageAccountant:
    return UsageAccountant(store, scheduler=scheduler)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


# Health check endpoint
@router.get("/health")
async def health_check():
    """Service liveness and configured backend"""
    return {
        "status": "healthy",
        "store_backend": settings.quota_store_backend,
        "timestamp": time.time(),
    }


# Prometheus metrics endpoint
@router.get("/metrics")
async def metrics():
    """Expose Prometheus metrics; restrict at the network level in production"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Gems


@router.get("/gems/status", response_model=GemStatus)
async def gem_status(
    request: Request,
    user: User = Depends(require_auth),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    """Current gem balance, refilling an elapsed window first"""
    log_request(_request_id(request), "gem_status", user_id=str(user.id))
    status = await scheduler.get_gem_status(str(user.id))

    if 0 < status.current_gems <= settings.low_gem_warning_threshold:
        logger.info("Gem balance low", extra={"user_id": str(user.id), "current_gems": status.current_gems})

    return status


@router.post("/gems/deduct", response_model=DeductResult)
async def deduct_gems(
    request: Request,
    body: DeductRequest,
    user: User = Depends(require_auth),
    scheduler: ResetScheduler = Depends(get_scheduler),
    accountant: UsageAccountant = Depends(get_accountant),
):
    """
    Atomically debit gems

    Returns 400 with the unchanged balance when the user has too few gems.
    """
    user_id = resolve_target_user(user, body.user_id)
    log_request(
        _request_id(request), "deduct_gems", user_id=user_id,
        extra={"gems_to_deduct": body.gems_to_deduct},
    )

    if settings.token_lockout_enabled:
        await scheduler.assert_token_chat_allowed(user_id)

    result = await accountant.debit(user_id, body.gems_to_deduct)

    if not result.success:
        error = QuotaExhaustedError(user_id, body.gems_to_deduct, result.remaining_gems)
        return JSONResponse(status_code=error.status_code, content=error.to_response())
    return result


@router.post("/gems/reset", response_model=ResetResult)
async def reset_gems(
    request: Request,
    body: ResetRequest,
    user: User = Depends(require_auth),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    """Refill to the tier maximum and start a new window"""
    user_id = resolve_target_user(user, body.user_id)
    log_request(_request_id(request), "reset_gems", user_id=user_id)

    return await scheduler.reset_gems(user_id)


@router.post("/gems/charge", response_model=ChargeResult)
async def charge_interaction(
    request: Request,
    body: ChargeRequest,
    user: User = Depends(require_auth),
    scheduler: ResetScheduler = Depends(get_scheduler),
    accountant: UsageAccountant = Depends(get_accountant),
):
    """Charge one AI exchange: ceil((input + output) / 1000) gems"""
    user_id = str(user.id)
    log_request(
        _request_id(request), "charge_interaction", user_id=user_id,
        extra={"input_tokens": body.input_tokens, "output_tokens": body.output_tokens},
    )

    if settings.token_lockout_enabled:
        await scheduler.assert_token_chat_allowed(user_id)

    result = await accountant.charge_interaction(user_id, body.input_tokens, body.output_tokens)

    if not result.success:
        requested = gems_from_tokens(body.input_tokens, body.output_tokens, accountant.tokens_per_gem)
        error = QuotaExhaustedError(user_id, requested, result.remaining_gems)
        return JSONResponse(
            status_code=error.status_code,
            content={**result.model_dump(), **error.to_response()},
        )
    return result


# Tokens


@router.post("/tokens/track", response_model=TrackResult)
async def track_tokens(
    request: Request,
    body: TrackRequest,
    user: User = Depends(require_auth),
    accountant: UsageAccountant = Depends(get_accountant),
):
    """Add consumed tokens; the response says whether the lockout tripped"""
    user_id = resolve_target_user(user, body.user_id)
    log_request(
        _request_id(request), "track_tokens", user_id=user_id,
        extra={"tokens_to_add": body.tokens_to_add},
    )

    return await accountant.add(user_id, body.tokens_to_add)


@router.get("/tokens/status", response_model=TokenStatus)
async def token_status(
    request: Request,
    user: User = Depends(require_auth),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    """Token lockout state, lifting an expired lockout first"""
    log_request(_request_id(request), "token_status", user_id=str(user.id))
    return await scheduler.get_token_status(str(user.id))


# Alpha tester program


@router.post("/validate-alpha-code", response_model=AlphaCodeResponse, response_model_exclude_none=True)
async def validate_code(body: AlphaCodeRequest):
    """Check a tester enrollment code; always answers 200"""
    return validate_alpha_code(body.code)


@router.post("/alpha-tier-switch")
async def alpha_tier_switch(
    request: Request,
    body: AlphaTierSwitchRequest,
    user: User = Depends(require_auth),
    store: QuotaStore = Depends(get_store),
):
    """Let an enrolled tester set their own subscription state"""
    log_request(_request_id(request), "alpha_tier_switch", user_id=str(user.id))

    await AlphaTierSwitcher(store).switch(user, body)
    return {"success": True}


# Account


@router.delete("/quota", response_model=PurgeResult)
async def purge_quota(
    request: Request,
    user: User = Depends(require_auth),
    store: QuotaStore = Depends(get_store),
):
    """Delete every quota record of the caller (part of the account-data purge)"""
    user_id = str(user.id)
    log_request(_request_id(request), "purge_quota", user_id=user_id)

    deleted = await store.purge_user(user_id)
    return PurgeResult(success=True, deleted=deleted)
