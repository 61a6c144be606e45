"""Onboarding example of litestar-durable integration.

This example runs two durable workflows inside a Litestar app:
- ``onboarding``: create a user record, then send a welcome email
- ``order_saga``: reserve stock and charge a card, refunding and releasing
  the reservation when shipping fails

Run with:
    cd examples/onboarding
    litestar run

Then:
    curl -X POST localhost:8000/workflows/instances \
        -H 'Content-Type: application/json' \
        -d '{"workflow_type": "onboarding", "input": {"email": "a@b.com"}}'
"""

from __future__ import annotations

import logging
from typing import Any

from litestar import Litestar

from litestar_durable import (
    ActivityCommand,
    ActivityFailedError,
    ActivityOptions,
    BaseActivity,
    BaseWorkflow,
    CompensationCommand,
    EngineConfig,
    SideEffectCommand,
    WorkflowPlugin,
    WorkflowPluginConfig,
)

logging.basicConfig(level=logging.INFO)

# =============================================================================
# Activities
# =============================================================================

USERS: dict[str, dict[str, Any]] = {}


class CreateUserRecord(BaseActivity):
    """Create the user row, returning the existing one on redelivery."""

    name = "create_user_record"

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        email = payload["email"]
        if email not in USERS:
            USERS[email] = {"id": 100 + len(USERS) + 1, "email": email}
        return {"id": USERS[email]["id"]}


class SendWelcomeEmail(BaseActivity):
    """Pretend to send a welcome email."""

    name = "send_welcome_email"

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"sent": True, "user_id": payload["user_id"]}


class ReserveStock(BaseActivity):
    name = "reserve_stock"

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"reservation": f"RES-{payload['order_id']}"}

    async def compensate(self, instance_id: Any, original_payload: dict[str, Any]) -> dict[str, Any]:
        return {"released": f"RES-{original_payload['order_id']}"}


class ChargeCard(BaseActivity):
    name = "charge_card"

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"charge_id": f"CH-{payload['order_id']}", "amount": payload["amount"]}

    async def compensate(self, instance_id: Any, original_payload: dict[str, Any]) -> dict[str, Any]:
        return {"refunded": original_payload["amount"]}


class ShipOrder(BaseActivity):
    """Fails for orders flagged as undeliverable."""

    name = "ship_order"

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("undeliverable"):
            msg = f"Cannot ship order {payload['order_id']}"
            raise RuntimeError(msg)
        return {"tracking_number": f"TRACK-{payload['order_id']}"}


# =============================================================================
# Workflows
# =============================================================================


class OnboardingWorkflow(BaseWorkflow):
    """Create a user, then welcome them."""

    name = "onboarding"
    version = "1.0.0"
    description = "Create a user record and send a welcome email"

    def execute(self, input: dict[str, Any]):
        user = yield ActivityCommand("create_user_record", {"email": input["email"]})
        yield ActivityCommand("send_welcome_email", {"user_id": user["id"]})
        return f"Onboarding complete for user: {user['id']}"


class OrderSagaWorkflow(BaseWorkflow):
    """Reserve, charge and ship an order, undoing earlier steps on failure."""

    name = "order_saga"
    version = "1.0.0"
    description = "Order fulfillment with compensation"

    def execute(self, input: dict[str, Any]):
        order_id = yield SideEffectCommand(lambda: input.get("order_id") or "generated", name="order_id")
        order = {"order_id": order_id, "amount": input.get("amount", 0)}
        no_retries = ActivityOptions(max_retries=0)

        yield ActivityCommand("reserve_stock", order)
        charge = yield ActivityCommand("charge_card", order)
        try:
            shipment = yield ActivityCommand(
                "ship_order",
                {**order, "undeliverable": input.get("undeliverable", False)},
                options=no_retries,
            )
        except ActivityFailedError:
            yield CompensationCommand("charge_card", order)
            yield CompensationCommand("reserve_stock", order)
            raise
        return {"charge_id": charge["charge_id"], "tracking_number": shipment["tracking_number"]}


# =============================================================================
# Application
# =============================================================================

workflow_plugin = WorkflowPlugin(
    config=WorkflowPluginConfig(
        auto_register_workflows=[OnboardingWorkflow, OrderSagaWorkflow],
        auto_register_activities=[CreateUserRecord, SendWelcomeEmail, ReserveStock, ChargeCard, ShipOrder],
        engine_config=EngineConfig(poll_interval_seconds=0.2, retry_delay_seconds=1.0),
    )
)

app = Litestar(plugins=[workflow_plugin], debug=True)
