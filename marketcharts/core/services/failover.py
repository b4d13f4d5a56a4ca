"""Primary/backup provider selection with timed recovery probes."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from marketcharts.core.exceptions import AllProvidersUnavailable, MarketChartsError
from marketcharts.core.providers import ProviderClient

DEFAULT_RETRY_WINDOW = timedelta(minutes=60)


class FailoverState(str, Enum):
    """Which provider new requests are routed to."""

    PRIMARY_ACTIVE = "primary_active"
    BACKUP_ACTIVE = "backup_active"


class FailoverEventKind(str, Enum):
    """Transitions published by the controller."""

    PRIMARY_FAILED = "primary_failed"
    PRIMARY_RESTORED = "primary_restored"
    PRIMARY_STILL_DOWN = "primary_still_down"


@dataclass(frozen=True)
class FailoverEvent:
    """Structured record of a controller transition."""

    kind: FailoverEventKind
    at: datetime
    provider: str
    retry_after: datetime | None = None
    cause: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class ProviderHealthState:
    """Point-in-time view of one provider."""

    service_name: str
    remaining_calls_today: int
    call_limit: int
    is_available: bool
    retry_after: datetime | None = None


@dataclass(frozen=True)
class _RoutingState:
    primary_available: bool = True
    retry_after: datetime | None = None


FailoverListener = Callable[[FailoverEvent], None]


class ProviderFailoverController:
    """Routes requests to the primary provider and falls back to the backup.

    After a primary failure the controller stays on the backup until the
    retry window elapses, then probes the primary once before routing to it
    again. Routing state is a single immutable pair swapped under a lock, so
    readers never observe a half-updated state. Health probes run outside the
    lock. The controller does not log; transitions are published to
    subscribers and kept in ``events``.
    """

    def __init__(
        self,
        primary: ProviderClient,
        backup: ProviderClient,
        *,
        retry_window: timedelta = DEFAULT_RETRY_WINDOW,
        clock: Callable[[], datetime] | None = None,
        max_events: int = 100,
    ) -> None:
        if retry_window <= timedelta(0):
            raise ValueError("retry_window must be positive")
        self._primary = primary
        self._backup = backup
        self._retry_window = retry_window
        self._clock = clock or (lambda: datetime.now(UTC))
        self._state = _RoutingState()
        self._lock = asyncio.Lock()
        self._events: deque[FailoverEvent] = deque(maxlen=max_events)
        self._listeners: list[FailoverListener] = []
        self._backup_last_probe: bool | None = None

    @property
    def primary(self) -> ProviderClient:
        return self._primary

    @property
    def backup(self) -> ProviderClient:
        return self._backup

    @property
    def state(self) -> FailoverState:
        return FailoverState.PRIMARY_ACTIVE if self._state.primary_available else FailoverState.BACKUP_ACTIVE

    @property
    def retry_after(self) -> datetime | None:
        return self._state.retry_after

    @property
    def events(self) -> list[FailoverEvent]:
        return list(self._events)

    def is_primary(self, provider: ProviderClient) -> bool:
        return provider is self._primary

    def subscribe(self, listener: FailoverListener) -> None:
        """Register a callable invoked with every published event."""
        self._listeners.append(listener)

    async def select_provider(self) -> ProviderClient:
        """Return the provider new requests should use.

        Raises:
            AllProvidersUnavailable: the primary is down and the backup probe failed
        """
        snapshot = self._state
        if snapshot.primary_available:
            return self._primary

        if snapshot.retry_after is None or self._clock() >= snapshot.retry_after:
            if await self.force_reset_to_primary():
                return self._primary

        backup_ok = await self._backup.is_available()
        self._backup_last_probe = backup_ok
        if backup_ok:
            return self._backup

        raise AllProvidersUnavailable(
            failed_providers=[self._primary.service_name, self._backup.service_name],
            details={"retry_after": self._state.retry_after.isoformat() if self._state.retry_after else None},
        )

    async def report_primary_failure(self, cause: BaseException | str | None = None) -> FailoverEvent:
        """Mark the primary unavailable until one retry window from now."""
        now = self._clock()
        retry_after = now + self._retry_window
        async with self._lock:
            self._state = _RoutingState(primary_available=False, retry_after=retry_after)
        return self._publish(FailoverEventKind.PRIMARY_FAILED, now, retry_after, cause)

    async def force_reset_to_primary(self) -> bool:
        """Probe the primary now; route to it again on success, reschedule otherwise."""
        healthy = await self._primary.is_available()
        now = self._clock()
        if healthy:
            async with self._lock:
                self._state = _RoutingState(primary_available=True, retry_after=None)
            self._publish(FailoverEventKind.PRIMARY_RESTORED, now, None, None)
            return True

        retry_after = now + self._retry_window
        async with self._lock:
            self._state = _RoutingState(primary_available=False, retry_after=retry_after)
        self._publish(FailoverEventKind.PRIMARY_STILL_DOWN, now, retry_after, "health probe failed")
        return False

    async def are_all_unavailable(self) -> bool:
        """Probe both providers concurrently; true only when both fail."""
        primary_ok, backup_ok = await asyncio.gather(self._primary.is_available(), self._backup.is_available())
        self._backup_last_probe = backup_ok
        return not (primary_ok or backup_ok)

    def health(self) -> list[ProviderHealthState]:
        """Snapshot of both providers."""
        snapshot = self._state
        return [
            ProviderHealthState(
                service_name=self._primary.service_name,
                remaining_calls_today=self._primary.get_remaining_calls(),
                call_limit=self._primary.call_limit,
                is_available=snapshot.primary_available,
                retry_after=snapshot.retry_after,
            ),
            ProviderHealthState(
                service_name=self._backup.service_name,
                remaining_calls_today=self._backup.get_remaining_calls(),
                call_limit=self._backup.call_limit,
                is_available=self._backup_last_probe is not False,
            ),
        ]

    def _publish(
        self,
        kind: FailoverEventKind,
        at: datetime,
        retry_after: datetime | None,
        cause: BaseException | str | None,
    ) -> FailoverEvent:
        error_code = cause.error_code if isinstance(cause, MarketChartsError) else None
        if isinstance(cause, MarketChartsError):
            cause_text: str | None = cause.message
        elif cause is not None:
            cause_text = str(cause)
        else:
            cause_text = None
        event = FailoverEvent(
            kind=kind,
            at=at,
            provider=self._primary.service_name,
            retry_after=retry_after,
            cause=cause_text,
            error_code=error_code,
        )
        self._events.append(event)
        for listener in list(self._listeners):
            listener(event)
        return event


__all__ = [
    "DEFAULT_RETRY_WINDOW",
    "FailoverEvent",
    "FailoverEventKind",
    "FailoverListener",
    "FailoverState",
    "ProviderFailoverController",
    "ProviderHealthState",
]
