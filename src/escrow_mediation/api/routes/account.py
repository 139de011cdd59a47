"""Caller account REST API routes.

Balances are read-only here: they only change through mediation transitions.

Routes:
    GET    /api/v1/me/balances            - Spendable and escrowed balance
    GET    /api/v1/me/ledger              - Ledger entries, newest first
    GET    /api/v1/me/notifications       - Notifications, newest first
    POST   /api/v1/me/notifications/read  - Mark notifications read
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from escrow_mediation.api.deps import get_current_actor, get_db_session
from escrow_mediation.domain.actors import Actor  # noqa: TC001
from escrow_mediation.schemas.account import (
    BalancesResponse,
    LedgerEntryResponse,
    MarkNotificationsReadRequest,
    MarkNotificationsReadResponse,
    NotificationResponse,
)
from escrow_mediation.services.account_service import AccountService

router = APIRouter(prefix="/api/v1/me", tags=["Account"])


@router.get("/balances", response_model=BalancesResponse, summary="Caller's balances")
async def get_balances(
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> BalancesResponse:
    return await AccountService(session).balances(actor)


@router.get("/ledger", response_model=list[LedgerEntryResponse], summary="Caller's ledger")
async def get_ledger(
    limit: int = Query(default=100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[LedgerEntryResponse]:
    entries = await AccountService(session).ledger(actor, limit=limit)
    return [LedgerEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/notifications",
    response_model=list[NotificationResponse],
    summary="Caller's notifications",
)
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[NotificationResponse]:
    notifications = await AccountService(session).notifications(
        actor, unread_only=unread_only, limit=limit
    )
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.post(
    "/notifications/read",
    response_model=MarkNotificationsReadResponse,
    summary="Mark notifications read",
)
async def mark_notifications_read(
    request: MarkNotificationsReadRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> MarkNotificationsReadResponse:
    return await AccountService(session).mark_notifications_read(actor, request.notification_ids)
