"""Events collected during a transaction and pushed after it commits.

Services never talk to the hub while a transaction is open: they append
to an Outbox, and the unit of work dispatches it once the commit has
succeeded. A rolled-back transaction simply drops its outbox, so a client
can never see an event for a state that was not persisted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from escrow_mediation.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from escrow_mediation.realtime.hub import RealtimeHub

logger = get_logger(__name__)


@dataclass(frozen=True)
class OutboundEvent:
    event: str
    payload: dict[str, Any]
    user_id: uuid.UUID | None = None
    room: str | None = None
    exclude_user: uuid.UUID | None = None


@dataclass
class Outbox:
    events: list[OutboundEvent] = field(default_factory=list)

    def to_user(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> None:
        self.events.append(OutboundEvent(event=str(event), payload=payload, user_id=user_id))

    def to_users(
        self, user_ids: Iterable[uuid.UUID], event: str, payload: dict[str, Any]
    ) -> None:
        for user_id in dict.fromkeys(user_ids):
            self.to_user(user_id, event, payload)

    def to_room(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude_user: uuid.UUID | None = None,
    ) -> None:
        self.events.append(
            OutboundEvent(event=str(event), payload=payload, room=room, exclude_user=exclude_user)
        )

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)

    async def dispatch(self, hub: RealtimeHub | None) -> None:
        """Deliver every collected event in order, then empty the outbox.

        A failing delivery is logged and the rest still go out; the
        transaction they describe is already committed.
        """
        events, self.events = self.events, []
        if hub is None:
            return
        for item in events:
            try:
                if item.room is not None:
                    await hub.emit_to_room(
                        item.room, item.event, item.payload, exclude_user=item.exclude_user
                    )
                elif item.user_id is not None:
                    await hub.emit_to_user(item.user_id, item.event, item.payload)
            except Exception as exc:  # noqa: BLE001 - committed state must not be undone by delivery
                logger.warning(
                    "realtime.dispatch_failed",
                    event_name=item.event,
                    room=item.room,
                    user_id=str(item.user_id) if item.user_id else None,
                    error=str(exc),
                )
