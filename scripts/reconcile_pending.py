"""Poll the gateway for orders stuck in an unsettled status.

Covers webhooks that never arrived: each unsettled order with a charge id is
refreshed through the same status lattice the webhook path uses. Orders whose
last charge call timed out without a charge id are looked up at the gateway by
their order code first.
"""

import argparse
import asyncio

from paybridge.common.db import SessionLocal
from paybridge.common.errors import GatewayError
from paybridge.services.checkout.service import CheckoutService
from paybridge.services.gateway_adapter.client import PagarmeClient
from paybridge.services.orders.store import OrderPaymentStore
from paybridge.services.webhooks.service import WebhookReconciler


async def reconcile(limit: int, dry_run: bool) -> int:
    """Refresh up to `limit` unsettled orders; returns how many changed status."""

    store = OrderPaymentStore(SessionLocal)
    checkout = CheckoutService(
        store,
        PagarmeClient.from_settings(),
        reconciler=WebhookReconciler(store, SessionLocal, service_name="reconcile-pending"),
        service_name="reconcile-pending",
    )
    linked = [order for order in store.list_unsettled(limit=limit) if order.payment_id is not None]
    changed = 0
    for order in linked + store.list_unconfirmed(limit=limit):
        if dry_run:
            print(f"would refresh order_id={order.order_id} charge_id={order.payment_id} status={order.payment_status}")
            continue
        try:
            result = await checkout.refresh_status(order.order_id)
        except GatewayError as exc:
            print(f"skip order_id={order.order_id} error={exc}")
            continue
        if result.payment_status != order.payment_status or result.payment_id != order.payment_id:
            changed += 1
            print(f"order_id={order.order_id} {order.payment_status} -> {result.payment_status}")
    return changed


def main() -> None:
    """Parse CLI args and run one reconciliation pass."""

    parser = argparse.ArgumentParser(description="Refresh unsettled orders from the payment gateway.")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    changed = asyncio.run(reconcile(args.limit, args.dry_run))
    print(f"Reconciled orders changed={changed}")


if __name__ == "__main__":
    main()
