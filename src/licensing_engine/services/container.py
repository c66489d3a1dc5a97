"""Wiring of the services that share one database session."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.channels import AlertChannelSender
from licensing_engine.config import Settings, get_settings
from licensing_engine.events import AsyncEventEmitter
from licensing_engine.gateway import PaymentGatewayProvider
from licensing_engine.services.alerts import AlertService, AlertSubscriber
from licensing_engine.services.cache import DerivedViewCache
from licensing_engine.services.license_service import LicenseService
from licensing_engine.services.payment_status import PaymentStatusService
from licensing_engine.services.reconciliation import GatewayReconciler
from licensing_engine.services.workflow import WorkflowService


@dataclass
class ServiceContainer:
    session: AsyncSession
    emitter: AsyncEventEmitter
    alerts: AlertService
    licenses: LicenseService
    payments: PaymentStatusService
    workflow: WorkflowService
    reconciler: GatewayReconciler


def build_services(
    session: AsyncSession,
    cache: DerivedViewCache | None = None,
    senders: dict[str, AlertChannelSender] | None = None,
    provider: PaymentGatewayProvider | None = None,
    settings: Settings | None = None,
    subscribe_alerts: bool = True,
) -> ServiceContainer:
    """Build the service graph for one unit of work.

    The emitter is per-container because its alert subscriber writes
    through the same session.
    """
    settings = settings or get_settings()
    emitter = AsyncEventEmitter()
    alerts = AlertService(session, senders=senders)
    if subscribe_alerts:
        AlertSubscriber(alerts).register(emitter)

    licenses = LicenseService(
        session,
        emitter=emitter,
        license_duration=settings.license_duration,
        certificate_duration=settings.certificate_license_duration,
    )
    payments = PaymentStatusService(
        session,
        license_service=licenses,
        cache=cache,
        emitter=emitter,
        alert_service=alerts,
        due_days=settings.payment_due_days,
        max_write_retries=settings.applicant_write_retries,
    )
    workflow = WorkflowService(
        session,
        license_service=licenses,
        cache=cache,
        emitter=emitter,
        max_write_retries=settings.applicant_write_retries,
        group_counts_ttl=settings.group_counts_cache_ttl,
    )
    reconciler = GatewayReconciler(session, payments, provider=provider, emitter=emitter)
    return ServiceContainer(
        session=session,
        emitter=emitter,
        alerts=alerts,
        licenses=licenses,
        payments=payments,
        workflow=workflow,
        reconciler=reconciler,
    )
