"""
Service wiring.

Builds the case store, messaging gateway, notifier, alert service, payment
reconciler and status monitor once per process. Routes receive them through
the ``get_services`` dependency; tests override that dependency with fakes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.db import get_supabase_admin
from app.services.alerts import AlertService
from app.services.case_store import SupabaseCaseStore
from app.services.messaging import BrevoGateway
from app.services.notifier import StatusNotifier
from app.services.payment_reconciler import PaymentReconciler
from app.services.retry import DEFAULT_BASE_DELAY
from app.services.status_monitor import StatusChangeMonitor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: SupabaseCaseStore
    gateway: BrevoGateway
    alerts: AlertService
    notifier: StatusNotifier
    reconciler: PaymentReconciler
    monitor: StatusChangeMonitor


def build_services(store, gateway, retry_base_delay: float = DEFAULT_BASE_DELAY) -> Services:
    """Assemble the service graph around a store and a gateway."""
    alerts = AlertService(store)
    notifier = StatusNotifier(store, gateway, retry_base_delay=retry_base_delay)
    return Services(
        store=store,
        gateway=gateway,
        alerts=alerts,
        notifier=notifier,
        reconciler=PaymentReconciler(store, gateway, alerts, retry_base_delay=retry_base_delay),
        monitor=StatusChangeMonitor(store, notifier, alerts),
    )


_services: Optional[Services] = None


async def get_services() -> Services:
    """Return the process-wide services, creating the Supabase client on first use."""
    global _services
    if _services is None:
        client = await get_supabase_admin()
        _services = build_services(SupabaseCaseStore(client), BrevoGateway())
        logger.info("Services initialised (cases table: %s)", _services.store.cases_table)
    return _services
