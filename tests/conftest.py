"""Shared test fixtures for the escrow mediation test suite.

Provides:
    - A temporary SQLite file database per test (real locking between sessions)
    - Seeded users: seller, buyer, mediators, admins and an outsider
    - A realtime hub with recording fake sockets
    - MediationFlow, which drives a mediation to a given status
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from escrow_mediation.config import Settings
from escrow_mediation.domain.actors import Actor
from escrow_mediation.domain.enums import MediationStatus, UserRole
from escrow_mediation.infrastructure.database.orm_models import (
    Base,
    LedgerEntry,
    MediationRequest,
    UserAccount,
)
from escrow_mediation.infrastructure.database.repositories import (
    Balances,
    LedgerRepository,
    MediationRepository,
    UserRepository,
)
from escrow_mediation.realtime import Connection, InMemoryPresenceRegistry, RealtimeHub
from escrow_mediation.services.dispute_service import DisputeService
from escrow_mediation.services.mediation_service import MediationService

BUYER_START_BALANCE = Decimal("200.00")


# ---------------------------------------------------------------------------
# Configuration & database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:  # noqa: ANN001
    return Settings(
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'mediation.db'}",
        presence_backend="memory",
        realtime_node_id="test-node",
        platform_currency="TND",
        tnd_usd_exchange_rate=Decimal("3.0"),
        max_mediator_rejections=3,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings):  # noqa: ANN201
    engine = create_async_engine(settings.database_url, connect_args={"timeout": 15})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:  # noqa: ANN001
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]):  # noqa: ANN201
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest.fixture
def balance_of(session_factory: async_sessionmaker[AsyncSession]):  # noqa: ANN201
    async def _balance_of(actor: Actor) -> Balances:
        async with session_factory() as session:
            balances = await UserRepository(session).get_balances(actor.user_id)
        assert balances is not None
        return balances

    return _balance_of


@pytest.fixture
def load_mediation(session_factory: async_sessionmaker[AsyncSession]):  # noqa: ANN201
    """Read a mediation in a fresh session, as another request would see it."""

    async def _load(mediation_id: uuid.UUID) -> MediationRequest:
        async with session_factory() as session:
            mediation = await MediationRepository(session).get_by_id(mediation_id)
        assert mediation is not None
        return mediation

    return _load


@pytest.fixture
def ledger_for(session_factory: async_sessionmaker[AsyncSession]):  # noqa: ANN201
    async def _ledger_for(mediation_id: uuid.UUID) -> list[LedgerEntry]:
        async with session_factory() as session:
            return await LedgerRepository(session).get_for_mediation(mediation_id)

    return _ledger_for


@dataclass
class Users:
    seller: Actor
    buyer: Actor
    mediator: Actor
    other_mediator: Actor
    admin: Actor
    other_admin: Actor
    outsider: Actor
    tokens: dict[uuid.UUID, str] = field(default_factory=dict)

    def token(self, actor: Actor) -> str:
        return self.tokens[actor.user_id]


def _account(name: str, role: UserRole = UserRole.USER, **kwargs: Any) -> UserAccount:
    return UserAccount(
        id=uuid.uuid4(),
        full_name=name,
        role=role.value,
        api_token=f"token-{name.lower().replace(' ', '-')}",
        balance=kwargs.pop("balance", Decimal("0.00")),
        escrow_balance=Decimal("0.00"),
        **kwargs,
    )


@pytest_asyncio.fixture
async def users(session_factory: async_sessionmaker[AsyncSession]) -> Users:
    accounts = {
        "seller": _account("Sally Seller"),
        "buyer": _account("Bob Buyer", balance=BUYER_START_BALANCE),
        "mediator": _account("Mia Mediator", is_mediator_qualified=True),
        "other_mediator": _account("Max Mediator", is_mediator_qualified=True),
        "admin": _account("Ada Admin", role=UserRole.ADMIN),
        "other_admin": _account("Alan Admin", role=UserRole.ADMIN),
        "outsider": _account("Olga Outsider", balance=Decimal("50.00")),
    }
    async with session_factory() as session:
        session.add_all(accounts.values())
        await session.commit()

    actors = {
        key: Actor(user_id=acc.id, role=UserRole(acc.role), full_name=acc.full_name)
        for key, acc in accounts.items()
    }
    return Users(**actors, tokens={acc.id: acc.api_token for acc in accounts.values()})


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------


class FakeSocket:
    """Records every frame the hub pushes to one connection."""

    def __init__(self, user_id: uuid.UUID) -> None:
        self.frames: list[dict[str, Any]] = []
        self.connection = Connection(user_id, self._record)

    async def _record(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [f["data"] for f in self.frames if f["event"] == name]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub(InMemoryPresenceRegistry(), node_id="test-node")


@pytest.fixture
def connect(hub: RealtimeHub):  # noqa: ANN201
    async def _connect(actor: Actor) -> FakeSocket:
        socket = FakeSocket(actor.user_id)
        await hub.attach(socket.connection)
        return socket

    return _connect


# ---------------------------------------------------------------------------
# Driving a mediation through its lifecycle
# ---------------------------------------------------------------------------


@dataclass
class MediationFlow:
    session_factory: async_sessionmaker[AsyncSession]
    hub: RealtimeHub
    settings: Settings
    users: Users

    def mediations(self, session: AsyncSession) -> MediationService:
        return MediationService(session, self.hub, self.settings)

    def disputes(self, session: AsyncSession) -> DisputeService:
        return DisputeService(session, self.hub, self.settings)

    async def create(
        self, bid: Decimal = Decimal("100.00"), fee: Decimal | None = Decimal("5.00")
    ) -> uuid.UUID:
        async with self.session_factory() as session:
            mediation = await self.mediations(session).create_mediation(
                self.users.seller,
                buyer_id=self.users.buyer.user_id,
                title="Road bike",
                bid_amount=bid,
                mediator_fee=fee,
            )
            return mediation.id

    async def advance(self, mediation_id: uuid.UUID, target: MediationStatus) -> None:
        """Apply the happy-path transitions until the mediation reaches `target`."""
        u = self.users
        steps = [
            (
                MediationStatus.MEDIATOR_ASSIGNED,
                lambda svc: svc.assign_mediator(u.admin, mediation_id, u.mediator.user_id),
            ),
            (
                MediationStatus.MEDIATION_OFFER_ACCEPTED,
                lambda svc: svc.mediator_accept(u.mediator, mediation_id),
            ),
            (
                MediationStatus.ESCROW_FUNDED,
                lambda svc: svc.buyer_confirm_and_fund(u.buyer, mediation_id),
            ),
            (
                MediationStatus.IN_PROGRESS,
                lambda svc: svc.seller_confirm_readiness(u.seller, mediation_id),
            ),
            (
                MediationStatus.DISPUTED,
                lambda svc: svc.open_dispute(u.buyer, mediation_id, "item not as described"),
            ),
        ]
        for reached, step in steps:
            async with self.session_factory() as session:
                await step(self.mediations(session))
            if reached == target:
                return
        raise AssertionError(f"No happy path to {target}")

    async def new(self, target: MediationStatus, **kwargs: Any) -> uuid.UUID:
        mediation_id = await self.create(**kwargs)
        if target != MediationStatus.PENDING_MEDIATOR_SELECTION:
            await self.advance(mediation_id, target)
        return mediation_id

    async def disputed_with_overseer(self, **kwargs: Any) -> uuid.UUID:
        mediation_id = await self.new(MediationStatus.DISPUTED, **kwargs)
        async with self.session_factory() as session:
            await self.disputes(session).join_dispute(self.users.admin, mediation_id)
        return mediation_id


@pytest.fixture
def flow(
    session_factory: async_sessionmaker[AsyncSession],
    hub: RealtimeHub,
    settings: Settings,
    users: Users,
) -> MediationFlow:
    return MediationFlow(session_factory, hub, settings, users)
