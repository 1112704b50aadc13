from __future__ import annotations

import pytest

from rtprobe.application.remediation import diagnose_with_remediation, invoke_remediation
from rtprobe.domain.models import RemediationResult, RemediationStatus
from rtprobe.infrastructure.errors import ErrorCode, RemediationError, WriteFailedError


@pytest.mark.asyncio
async def test_missing_notification_triggers_remediation_and_reverifies(
    make_client, fast_timeouts
) -> None:
    client = make_client(echo_on=(), notify_inserts=False)

    report = await diagnose_with_remediation(
        client, client.ensure_realtime_publication, timeouts=fast_timeouts
    )

    assert client.remediation_calls == 1
    assert report.initial.ok is False
    assert report.initial.needs_remediation
    assert report.final.ok is True
    assert report.ok and report.remediated
    payload = report.to_dict()
    assert payload["remediations"][0]["status"] == "ok"
    assert payload["initial"]["error_code"] == ErrorCode.ROUND_TRIP_TIMEOUT.value


@pytest.mark.asyncio
async def test_healthy_run_never_triggers_remediation(fake_client, fast_timeouts) -> None:
    report = await diagnose_with_remediation(
        fake_client, fake_client.ensure_realtime_publication, timeouts=fast_timeouts
    )

    assert fake_client.remediation_calls == 0
    assert report.initial is report.final
    assert not report.remediated
    assert "remediations" not in report.to_dict()


@pytest.mark.asyncio
async def test_write_failure_is_not_remediated(make_client, fast_timeouts) -> None:
    client = make_client(echo_on=(), insert_error=WriteFailedError("permission denied"))

    report = await diagnose_with_remediation(
        client, client.ensure_realtime_publication, timeouts=fast_timeouts
    )

    assert client.remediation_calls == 0
    assert report.final.error_code is ErrorCode.WRITE_FAILED


@pytest.mark.asyncio
async def test_error_result_stops_the_loop(make_client, fast_timeouts) -> None:
    client = make_client(
        echo_on=(),
        notify_inserts=False,
        remediation=RemediationResult(status=RemediationStatus.ERROR, error="permission denied"),
    )

    report = await diagnose_with_remediation(
        client, client.ensure_realtime_publication, timeouts=fast_timeouts, max_rounds=3
    )

    assert client.remediation_calls == 1
    assert report.final is report.initial
    assert report.ok is False
    assert report.remediations[0].error == "permission denied"


@pytest.mark.asyncio
async def test_unhelpful_remediation_is_bounded_by_rounds(make_client, fast_timeouts) -> None:
    client = make_client(
        echo_on=(), notify_inserts=False, remediation_enables_notifications=False
    )

    report = await diagnose_with_remediation(
        client, client.ensure_realtime_publication, timeouts=fast_timeouts, max_rounds=2
    )

    assert client.remediation_calls == 2
    assert report.ok is False
    assert report.final.needs_remediation


@pytest.mark.asyncio
async def test_zero_rounds_only_diagnoses(make_client, fast_timeouts) -> None:
    client = make_client(echo_on=(), notify_inserts=False)

    report = await diagnose_with_remediation(
        client, client.ensure_realtime_publication, timeouts=fast_timeouts, max_rounds=0
    )

    assert client.remediation_calls == 0
    assert report.final.needs_remediation


@pytest.mark.asyncio
async def test_negative_rounds_are_rejected(fake_client, fast_timeouts) -> None:
    with pytest.raises(ValueError):
        await diagnose_with_remediation(
            fake_client, fake_client.ensure_realtime_publication, max_rounds=-1
        )

    assert fake_client.channels == []


@pytest.mark.asyncio
async def test_invoke_remediation_turns_exceptions_into_error_results(make_client) -> None:
    client = make_client(remediation_error=RemediationError("rpc unavailable"))

    result = await invoke_remediation(client.ensure_realtime_publication)

    assert result.status is RemediationStatus.ERROR
    assert result.error == "rpc unavailable"
    assert result.added_count == 0
