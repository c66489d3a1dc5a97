"""Pydantic schemas for API request/response models.

Responses are camelCase. Requests accept either camelCase or snake_case
(and a few legacy names) so services only ever see one field name.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(ApiModel):
    """Error response schema."""

    detail: str
    code: str | None = None


# ============================================================================
# Workflow schemas
# ============================================================================


class AssignmentCreate(ApiModel):
    """Reviewer assignment request."""

    applicant_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("applicantId", "applicant_id", "applicant"),
    )
    assigned_group: str | None = Field(
        default=None,
        validation_alias=AliasChoices("assignedGroup", "assigned_group"),
    )
    remarks: str | None = None
    expected_version: int | None = Field(
        default=None,
        validation_alias=AliasChoices("expectedVersion", "expected_version"),
    )


class AssignmentUpdate(ApiModel):
    assigned_group: str | None = Field(
        default=None,
        validation_alias=AliasChoices("assignedGroup", "assigned_group"),
    )
    remarks: str | None = None


class AssignmentResponse(ApiModel):
    id: int
    applicant_id: int
    assigned_group: str
    remarks: str | None = None
    created_by: str | None = None
    created_at: datetime


class SentBackResponse(ApiModel):
    flags: dict[int, bool]


# ============================================================================
# Payment schemas
# ============================================================================


class PaymentStatusResponse(ApiModel):
    applicant_id: int
    total_due: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    is_paid: bool
    is_partially_paid: bool
    last_payment_date: datetime | None = None
    next_due_date: datetime
    days_overdue: int
    status: str
    payment_percentage: int


class RecordPaymentRequest(ApiModel):
    """Manual payment. Amount is validated by the service, not here."""

    amount: Any = Field(
        default=None,
        validation_alias=AliasChoices("amount", "amountPaid", "amount_paid", "amountDue"),
    )
    reference: str | None = Field(
        default=None,
        validation_alias=AliasChoices("referenceNumber", "reference_number", "reference"),
    )


class PsidStatusResponse(ApiModel):
    psid_number: str
    payment_confirmed: bool
    status: str


class PaymentHistoryEntryResponse(ApiModel):
    amount: Decimal
    payment_method: str
    reference_number: str = Field(
        validation_alias=AliasChoices("reference", "referenceNumber", "reference_number"),
        serialization_alias="referenceNumber",
    )
    bank_name: str | None = None
    transaction_date: datetime
    status: str
    notes: str | None = None


class PaymentHistoryResponse(ApiModel):
    applicant_id: int
    payments: list[PaymentHistoryEntryResponse]
    total_payments: int


class EligibilityResponse(ApiModel):
    applicant_id: int
    eligible: bool
    payment_status: str
    remaining_balance: Decimal
    message: str


class PaymentToVerify(ApiModel):
    reference_number: str = Field(
        default="",
        validation_alias=AliasChoices("referenceNumber", "reference_number", "reference"),
    )
    amount: Decimal = Decimal("0")


class VerifyPaymentsRequest(ApiModel):
    payments: list[PaymentToVerify] = Field(default_factory=list)


class PaymentVerificationResponse(ApiModel):
    reference_number: str = Field(
        validation_alias=AliasChoices("reference", "referenceNumber", "reference_number"),
        serialization_alias="referenceNumber",
    )
    amount: Decimal
    verified: bool
    message: str


class VerifyPaymentsResponse(ApiModel):
    total: int
    verified: int
    failed: int
    details: list[PaymentVerificationResponse]


class PaymentReminderRequest(ApiModel):
    days_until_due: int = Field(
        default=7,
        validation_alias=AliasChoices("daysUntilDue", "days_until_due"),
    )


class PaymentReminderResponse(ApiModel):
    sent: bool
    message: str


class PaymentSummaryResponse(ApiModel):
    total_applicants: int
    total_payment_required: Decimal
    total_payment_received: Decimal
    total_pending: Decimal
    payment_collection_rate: int
    overdue_count: int


# ============================================================================
# Gateway webhook schemas
# ============================================================================


class PaymentConfirmedWebhook(ApiModel):
    """Required fields are checked in the route so a missing one is a 400."""

    psid_number: str | None = Field(
        default=None, validation_alias=AliasChoices("psidNumber", "psid_number")
    )
    transaction_id: str | None = Field(
        default=None, validation_alias=AliasChoices("transactionId", "transaction_id")
    )
    status: str | None = None
    amount: Decimal | None = None
    payment_date: datetime | None = Field(
        default=None, validation_alias=AliasChoices("paymentDate", "payment_date")
    )
    bank_code: str | None = Field(
        default=None, validation_alias=AliasChoices("bankCode", "bank_code")
    )


class PaymentFailedWebhook(ApiModel):
    psid_number: str | None = Field(
        default=None, validation_alias=AliasChoices("psidNumber", "psid_number")
    )
    transaction_id: str | None = Field(
        default=None, validation_alias=AliasChoices("transactionId", "transaction_id")
    )
    reason: str | None = None


class WebhookResponse(ApiModel):
    success: bool
    message: str
    psid_number: str | None = None
    processed: bool
    applicant_updated: bool = False


# ============================================================================
# License schemas
# ============================================================================


class LicenseResponse(ApiModel):
    id: int
    applicant_id: int
    license_for: str | None = None
    license_number: str
    license_duration: str | None = None
    owner_name: str | None = None
    business_name: str | None = None
    types_of_plastics: str | None = None
    particulars: str | None = None
    fee_amount: Decimal | None = None
    address: str | None = None
    date_of_issue: datetime
    is_active: bool


class CertificateResponse(ApiModel):
    applicant_id: int
    license_number: str | None = None
    license_duration: str
    owner_name: str
    business_name: str
    address: str
    cnic_number: str | None = None
    district_id: int | None = None
    tehsil_id: int | None = None
    date_of_issue: date


# ============================================================================
# Alert schemas
# ============================================================================


class AlertCreateRequest(ApiModel):
    applicant_id: int = Field(validation_alias=AliasChoices("applicantId", "applicant_id"))
    title: str
    message: str
    type: str
    priority: str = "MEDIUM"
    channels: list[str] = Field(default_factory=list)
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AlertResponse(ApiModel):
    id: int
    applicant_id: int
    title: str
    message: str
    description: str | None = None
    type: str
    priority: str
    channels: list[str]
    status: str
    is_read: bool
    read_at: datetime | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    delivery_results: list[dict[str, Any]] = Field(default_factory=list)
    failure_reason: str | None = None
    retry_count: int
    sent_at: datetime | None = None
    created_at: datetime


class SendAlertRequest(ApiModel):
    channels: list[str] = Field(default_factory=list)


class ChannelResultResponse(ApiModel):
    channel: str
    success: bool
    error: str | None = None


class SendAlertResponse(ApiModel):
    success: bool
    channels: list[str]
    results: list[ChannelResultResponse]
    alert: AlertResponse


class MarkReadBatchRequest(ApiModel):
    alert_ids: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("alertIds", "alert_ids"),
    )


class MarkReadBatchResponse(ApiModel):
    updated: int


class UnreadCountResponse(ApiModel):
    applicant_id: int
    unread_count: int


class RecipientResponse(ApiModel):
    applicant_id: int
    email: str | None = None
    phone: str | None = None
    email_notifications: bool
    sms_notifications: bool
    in_app_notifications: bool
    whatsapp_notifications: bool
    alert_types: list[str] | None = None
    verified_email: bool
    verified_phone: bool
    is_active: bool


class PreferencesUpdate(ApiModel):
    """Only fields present in the request are changed."""

    applicant_id: int = Field(validation_alias=AliasChoices("applicantId", "applicant_id"))
    email: str | None = None
    phone: str | None = None
    email_notifications: bool | None = Field(
        default=None, validation_alias=AliasChoices("emailNotifications", "email_notifications")
    )
    sms_notifications: bool | None = Field(
        default=None, validation_alias=AliasChoices("smsNotifications", "sms_notifications")
    )
    in_app_notifications: bool | None = Field(
        default=None, validation_alias=AliasChoices("inAppNotifications", "in_app_notifications")
    )
    whatsapp_notifications: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("whatsappNotifications", "whatsapp_notifications"),
    )
    alert_types: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("alertTypes", "alert_types")
    )
    verified_email: bool | None = Field(
        default=None, validation_alias=AliasChoices("verifiedEmail", "verified_email")
    )
    verified_phone: bool | None = Field(
        default=None, validation_alias=AliasChoices("verifiedPhone", "verified_phone")
    )
    is_active: bool | None = Field(
        default=None, validation_alias=AliasChoices("isActive", "is_active")
    )
