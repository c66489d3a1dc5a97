"""Licensing workflow and payment services."""

from licensing_engine.services.alerts import AlertService, AlertSubscriber, CreateAlert
from licensing_engine.services.applicant_state import ApplicantStateWriter
from licensing_engine.services.cache import DerivedViewCache, InMemoryViewCache
from licensing_engine.services.container import ServiceContainer, build_services
from licensing_engine.services.license_service import LicenseService
from licensing_engine.services.payment_status import PaymentStatus, PaymentStatusService
from licensing_engine.services.reconciliation import (
    GatewayReconciler,
    PaymentConfirmation,
    PaymentFailure,
    ReconciliationOutcome,
)
from licensing_engine.services.workflow import (
    GROUP_SEQUENCE,
    WorkflowGroup,
    WorkflowService,
    WorkflowStateMachine,
)

__all__ = [
    "GROUP_SEQUENCE",
    "AlertService",
    "AlertSubscriber",
    "ApplicantStateWriter",
    "CreateAlert",
    "DerivedViewCache",
    "GatewayReconciler",
    "InMemoryViewCache",
    "LicenseService",
    "PaymentConfirmation",
    "PaymentFailure",
    "PaymentStatus",
    "PaymentStatusService",
    "ReconciliationOutcome",
    "ServiceContainer",
    "WorkflowGroup",
    "WorkflowService",
    "WorkflowStateMachine",
    "build_services",
]
