"""Tests for primary/backup routing."""

from __future__ import annotations

from datetime import timedelta

import pytest

from marketcharts.core.exceptions import AllProvidersUnavailable, ErrorCode, RateLimited
from marketcharts.core.services import (
    FailoverEvent,
    FailoverEventKind,
    FailoverState,
    ProviderFailoverController,
)


@pytest.fixture
def providers(provider_factory):
    return provider_factory("alpha_vantage"), provider_factory("stockdata", call_limit=100)


@pytest.fixture
def controller(providers, clock) -> ProviderFailoverController:
    primary, backup = providers
    return ProviderFailoverController(primary, backup, retry_window=timedelta(minutes=60), clock=clock)


@pytest.mark.asyncio
async def test_primary_is_selected_without_probing(controller, providers) -> None:
    primary, backup = providers

    assert await controller.select_provider() is primary
    assert controller.state is FailoverState.PRIMARY_ACTIVE
    assert primary.probe_count == 0
    assert backup.probe_count == 0


@pytest.mark.asyncio
async def test_failure_routes_to_backup_until_retry_window(controller, providers, clock) -> None:
    primary, backup = providers
    failure = RateLimited("Our standard API call frequency is 5 calls per minute", provider_name="alpha_vantage")

    event = await controller.report_primary_failure(failure)

    assert event.kind is FailoverEventKind.PRIMARY_FAILED
    assert event.error_code == ErrorCode.RATE_LIMITED
    assert event.retry_after == clock.now + timedelta(minutes=60)
    assert controller.state is FailoverState.BACKUP_ACTIVE

    clock.advance(timedelta(minutes=59))
    assert await controller.select_provider() is backup
    assert primary.probe_count == 0


@pytest.mark.asyncio
async def test_primary_restored_after_successful_probe(controller, providers, clock) -> None:
    primary, _ = providers
    await controller.report_primary_failure("boom")

    clock.advance(timedelta(minutes=61))

    assert await controller.select_provider() is primary
    assert primary.probe_count == 1
    assert controller.state is FailoverState.PRIMARY_ACTIVE
    assert controller.retry_after is None
    assert [e.kind for e in controller.events] == [
        FailoverEventKind.PRIMARY_FAILED,
        FailoverEventKind.PRIMARY_RESTORED,
    ]


@pytest.mark.asyncio
async def test_failed_probe_reschedules_and_uses_backup(controller, providers, clock) -> None:
    primary, backup = providers
    primary.available = False
    await controller.report_primary_failure("boom")

    clock.advance(timedelta(minutes=61))

    assert await controller.select_provider() is backup
    assert controller.state is FailoverState.BACKUP_ACTIVE
    assert controller.retry_after == clock.now + timedelta(minutes=60)
    assert controller.events[-1].kind is FailoverEventKind.PRIMARY_STILL_DOWN


@pytest.mark.asyncio
async def test_all_unavailable_when_primary_down_and_backup_probe_fails(controller, providers) -> None:
    primary, backup = providers
    primary.available = False
    backup.available = False
    await controller.report_primary_failure("boom")

    with pytest.raises(AllProvidersUnavailable) as exc_info:
        await controller.select_provider()

    assert exc_info.value.message == "All API services are unavailable"
    assert await controller.are_all_unavailable() is True


@pytest.mark.asyncio
async def test_are_all_unavailable_false_when_either_answers(controller, providers) -> None:
    primary, _ = providers
    primary.available = False

    assert await controller.are_all_unavailable() is False


@pytest.mark.asyncio
async def test_force_reset_routes_back_immediately(controller, providers) -> None:
    primary, _ = providers
    await controller.report_primary_failure("boom")

    assert await controller.force_reset_to_primary() is True
    assert await controller.select_provider() is primary


@pytest.mark.asyncio
async def test_listeners_receive_every_event(controller) -> None:
    received: list[FailoverEvent] = []
    controller.subscribe(received.append)

    await controller.report_primary_failure("boom")
    await controller.force_reset_to_primary()

    assert [e.kind for e in received] == [FailoverEventKind.PRIMARY_FAILED, FailoverEventKind.PRIMARY_RESTORED]
    assert received[0].cause == "boom"
    assert received[0].provider == "alpha_vantage"


@pytest.mark.asyncio
async def test_health_reports_quota_and_state(controller, providers) -> None:
    primary, backup = providers
    primary.remaining = 3
    await controller.report_primary_failure("boom")

    primary_state, backup_state = controller.health()

    assert primary_state.service_name == "alpha_vantage"
    assert primary_state.remaining_calls_today == 3
    assert primary_state.is_available is False
    assert primary_state.retry_after is not None
    assert backup_state.call_limit == 100
    assert backup_state.is_available is True


def test_retry_window_must_be_positive(providers) -> None:
    primary, backup = providers
    with pytest.raises(ValueError):
        ProviderFailoverController(primary, backup, retry_window=timedelta(0))
