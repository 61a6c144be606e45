"""Tests for workflow commands and their recorded payloads."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from litestar_durable.core.commands import (
    ActivityCommand,
    ActivityOptions,
    Command,
    CompensationCommand,
    SideEffectCommand,
    SignalWaitCommand,
    TimerCommand,
)
from litestar_durable.core.types import CommandKind

FIRE_AT = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestActivityOptions:
    """Tests for ActivityOptions."""

    def test_defaults_are_unset(self) -> None:
        options = ActivityOptions()

        assert options.to_dict() == {
            "timeout_seconds": None,
            "max_retries": None,
            "retry_delay_seconds": None,
            "queue_name": None,
        }

    def test_merged_with_fills_only_unset_fields(self) -> None:
        """Explicit values win over the defaults, including falsy ones."""
        defaults = ActivityOptions(timeout_seconds=30, max_retries=3, retry_delay_seconds=5, queue_name="default")
        options = ActivityOptions(max_retries=0, queue_name="emails")

        merged = options.merged_with(defaults)

        assert merged == ActivityOptions(timeout_seconds=30, max_retries=0, retry_delay_seconds=5, queue_name="emails")
        assert options.timeout_seconds is None

    def test_from_dict(self) -> None:
        options = ActivityOptions.from_dict({"timeout_seconds": 2.5, "queue_name": "q", "unknown": True})

        assert options == ActivityOptions(timeout_seconds=2.5, queue_name="q")

    def test_from_dict_none(self) -> None:
        assert ActivityOptions.from_dict(None) == ActivityOptions()


@pytest.mark.unit
class TestActivityCommand:
    """Tests for ActivityCommand and CompensationCommand."""

    def test_payload(self) -> None:
        command = ActivityCommand("charge_card", {"amount": 10}, ActivityOptions(max_retries=1))

        assert command.to_payload() == {
            "kind": "activity",
            "activity_type": "charge_card",
            "payload": {"amount": 10},
            "options": {
                "timeout_seconds": None,
                "max_retries": 1,
                "retry_delay_seconds": None,
                "queue_name": None,
            },
        }

    def test_signature_matches_recorded_payload(self) -> None:
        command = ActivityCommand("charge_card", {"amount": 10})

        assert command.signature() == ("activity", "charge_card")
        assert Command.signature_of(command.to_payload()) == command.signature()

    def test_payload_does_not_affect_signature(self) -> None:
        assert ActivityCommand("charge_card", 1).signature() == ActivityCommand("charge_card", 2).signature()

    def test_compensation(self) -> None:
        command = CompensationCommand("charge_card", {"amount": 10})

        assert command.kind is CommandKind.COMPENSATION
        assert isinstance(command, ActivityCommand)
        assert command.to_payload()["kind"] == "compensation"
        assert command.signature() == ("compensation", "charge_card")
        assert command.signature() != ActivityCommand("charge_card").signature()


@pytest.mark.unit
class TestTimerCommand:
    """Tests for TimerCommand."""

    def test_after(self) -> None:
        command = TimerCommand.after(timedelta(hours=1))

        assert command.delay == timedelta(hours=1)
        assert command.resolve_fire_at(FIRE_AT) == FIRE_AT + timedelta(hours=1)
        assert command.to_payload() == {"kind": "timer", "fire_at": None, "delay_seconds": 3600.0}

    def test_absolute(self) -> None:
        command = TimerCommand(fire_at=FIRE_AT)

        assert command.resolve_fire_at(FIRE_AT - timedelta(days=1)) == FIRE_AT
        assert command.to_payload()["fire_at"] == "2026-01-01T12:00:00+00:00"

    def test_zero_delay_is_allowed(self) -> None:
        assert TimerCommand(delay=timedelta(0)).to_payload()["delay_seconds"] == 0.0

    @pytest.mark.parametrize(
        "kwargs",
        [{}, {"fire_at": FIRE_AT, "delay": timedelta(seconds=1)}],
    )
    def test_requires_exactly_one(self, kwargs: dict) -> None:
        with pytest.raises(ValueError, match="exactly one"):
            TimerCommand(**kwargs)

    def test_signature(self) -> None:
        command = TimerCommand(fire_at=FIRE_AT)

        assert command.signature() == ("timer", None)
        assert Command.signature_of(command.to_payload()) == ("timer", None)


@pytest.mark.unit
class TestSideEffectAndSignal:
    def test_side_effect_payload_excludes_producer(self) -> None:
        command = SideEffectCommand(lambda: 42, name="order_id")

        assert command.to_payload() == {"kind": "side_effect", "name": "order_id"}
        assert command.signature() == ("side_effect", "order_id")
        assert Command.signature_of(command.to_payload()) == command.signature()

    def test_side_effect_names_distinguish_signatures(self) -> None:
        assert SideEffectCommand(lambda: 1, name="a").signature() != SideEffectCommand(lambda: 1, name="b").signature()

    def test_signal_wait(self) -> None:
        command = SignalWaitCommand("approval")

        assert command.to_payload() == {"kind": "signal_wait", "signal_name": "approval"}
        assert Command.signature_of(command.to_payload()) == ("signal_wait", "approval")

    def test_signature_of_unknown_payload(self) -> None:
        assert Command.signature_of({}) == ("", None)

    def test_base_command_payload_not_implemented(self) -> None:
        with pytest.raises(NotImplementedError):
            Command().to_payload()
