"""External signal delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar_durable.core.types import EventType
from litestar_durable.exceptions import WorkflowAlreadyCompletedError, WorkflowInstanceNotFoundError

if TYPE_CHECKING:
    from uuid import UUID

    from litestar_durable.core.config import EngineConfig
    from litestar_durable.core.models import HistoryEvent
    from litestar_durable.core.protocols import WorkflowStore

__all__ = ["SignalHandler"]

logger = logging.getLogger(__name__)


class SignalHandler:
    """Appends received signals to history.

    Signals are buffered: the n-th ``SignalWaitCommand`` on a name consumes the
    n-th signal received under that name, whether it arrived before or after
    the wait was reached. Signals no wait ever consumes stay in history and are
    still passed to the workflow's ``handle_signal``.
    """

    def __init__(self, store: WorkflowStore, config: EngineConfig) -> None:
        self.store = store
        self.config = config

    async def signal(self, instance_id: UUID, signal_name: str, payload: Any = None) -> HistoryEvent:
        """Record a ``SIGNAL_RECEIVED`` event and request a replay.

        Args:
            instance_id: The target instance.
            signal_name: Name of the signal.
            payload: JSON-serializable signal payload.

        Returns:
            The recorded event.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is terminal.
            StoreError: If ``payload`` is not JSON serializable.

        Example:
            >>> await handler.signal(instance_id, "approval", {"approved": True})
        """
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        if instance.status.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, instance.status)

        # Always wake the instance; it may reach the matching wait concurrently
        event = await self.store.append_event(
            instance_id,
            EventType.SIGNAL_RECEIVED,
            recorded_at=self.config.now(),
            command_payload={"signal_name": signal_name},
            result_payload=payload,
            request_wakeup=True,
        )
        logger.info("Signal %s received by workflow instance %s", signal_name, instance_id)
        return event
