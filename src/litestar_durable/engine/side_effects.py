"""Capture-once recording of non-deterministic values."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar_durable.core.commands import SideEffectCommand
from litestar_durable.core.serialization import to_json_value
from litestar_durable.core.types import EventType
from litestar_durable.exceptions import SideEffectError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from litestar_durable.core.config import EngineConfig
    from litestar_durable.core.models import HistoryEvent
    from litestar_durable.core.protocols import WorkflowStore

__all__ = ["SideEffectRecorder"]

logger = logging.getLogger(__name__)


class SideEffectRecorder:
    """Runs side-effect producers at most once per instance and step.

    The producer is the only sanctioned place for code such as random id
    generation or reading the current time. Its value is stored in a single
    ``SIDE_EFFECT_RECORDED`` event that serves as both the step's command and
    its resolution.
    """

    def __init__(self, store: WorkflowStore, config: EngineConfig) -> None:
        self.store = store
        self.config = config

    async def record(
        self,
        instance_id: UUID,
        step_index: int,
        producer: Callable[[], Any],
        name: str | None = None,
    ) -> Any:
        """Return the recorded value of a step, running ``producer`` only if none exists.

        Args:
            instance_id: The owning instance.
            step_index: The workflow step of the side effect.
            producer: Zero-argument callable producing the value.
            name: Optional label stored with the value.

        Returns:
            The recorded value.

        Raises:
            SideEffectError: If the producer raised or returned a value that is
                not JSON serializable. Nothing is recorded.
        """
        for event in await self.store.load_history(instance_id):
            if event.event_type == EventType.SIDE_EFFECT_RECORDED and event.step_index == step_index:
                return event.result_payload

        event = await self.record_event(instance_id, step_index, SideEffectCommand(producer, name))
        return event.result_payload

    async def record_event(self, instance_id: UUID, step_index: int, command: SideEffectCommand) -> HistoryEvent:
        """Run the producer of a frontier side effect and append its value.

        The value is normalized through JSON before it is recorded, so the
        workflow receives the same value now as on every later replay.

        Raises:
            SideEffectError: If the producer raised or its value is not JSON
                serializable. Nothing is recorded.
        """
        try:
            value = to_json_value(command.producer())
        except Exception as exc:
            raise SideEffectError(command.name, exc) from exc

        event = await self.store.append_event(
            instance_id,
            EventType.SIDE_EFFECT_RECORDED,
            recorded_at=self.config.now(),
            step_index=step_index,
            command_payload=command.to_payload(),
            result_payload=value,
        )
        logger.debug("Recorded side effect %s at step %d of %s", command.name or "", step_index, instance_id)
        return event
