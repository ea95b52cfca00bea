# schemas/order_definitions.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — ORDER & PAYMENT SCHEMAS
# ============================================================================
# Pydantic models shared by the API, the pipeline and the stores.
# ============================================================================

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class OrderState(str, Enum):
    """Explicit lifecycle of a checkout attempt, keyed by correlation id."""
    PENDING = "pending"
    FULFILLED = "fulfilled"
    ORPHANED = "orphaned"  # classification only, never persisted


class PaymentStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    OTHER = "other"


class ConfirmationOutcome(str, Enum):
    IGNORED = "ignored"            # not a payment event
    NOT_APPROVED = "not_approved"  # pending / rejected / missing reference
    UNRESOLVED = "unresolved"      # no pending order for the reference
    FULFILLED = "fulfilled"


class ArtifactStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"


# ============================================================================
# ORDER INPUT
# ============================================================================

class CalculationInput(BaseModel):
    """
    Fields the severance calculation reads.

    Accepts the form's hyphenated keys (``last-salary``) and camelCase
    (``lastSalary``) as well as the snake_case field names. Immutable once
    built.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    last_salary: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        validation_alias=AliasChoices("last_salary", "lastSalary", "last-salary"),
    )
    start_date: Optional[date] = Field(
        default=None,
        validation_alias=AliasChoices("start_date", "startDate", "start-date"),
    )
    end_date: Optional[date] = Field(
        default=None,
        validation_alias=AliasChoices("end_date", "endDate", "end-date"),
    )
    vacation_periods: int = Field(
        default=0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("vacation_periods", "vacationPeriods", "ferias-vencidas"),
    )

    @field_validator("last_salary", mode="before")
    @classmethod
    def _blank_salary(cls, value: Any) -> Any:
        # The form posts "" for an untouched field
        if value is None or (isinstance(value, str) and not value.strip()):
            return Decimal("0")
        return value

    @field_validator("vacation_periods", mode="before")
    @classmethod
    def _blank_periods(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _blank_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class OrderInput(CalculationInput):
    """Customer-supplied calculation request: identity, calculation fields and notes."""

    name: Optional[str] = Field(default=None, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    whatsapp: Optional[str] = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("whatsapp", "contact", "phone"),
    )
    irregularities: List[str] = Field(default_factory=list, max_length=50)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("invalid email address")
        return value

    @field_validator("irregularities", mode="before")
    @classmethod
    def _drop_blank_notes(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return value

    @property
    def display_name(self) -> str:
        return self.name or "Cliente"


# ============================================================================
# PERSISTED RECORDS
# ============================================================================

class PendingOrder(BaseModel):
    """A checkout attempt waiting for (or past) its payment confirmation."""
    correlation_id: str
    session_id: str
    order_input: OrderInput
    state: OrderState = OrderState.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    fulfilled_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.state == OrderState.PENDING


class Lead(BaseModel):
    """Contact details of a paying customer. Append-only."""
    correlation_id: str
    name: Optional[str] = None
    email: str
    whatsapp: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_order(cls, correlation_id: str, order_input: OrderInput) -> "Lead":
        return cls(
            correlation_id=correlation_id,
            name=order_input.name,
            email=order_input.email,
            whatsapp=order_input.whatsapp,
        )


# ============================================================================
# PAYMENT PROCESSOR CONTRACT
# ============================================================================

class CheckoutSessionRequest(BaseModel):
    """What the checkout initiator asks the processor to open."""
    correlation_id: str
    title: str
    unit_price: Decimal
    currency: str
    payer_email: str
    payer_name: str
    success_url: str
    failure_url: str
    pending_url: str
    notification_url: str


class CheckoutSession(BaseModel):
    """Processor's answer to a session request."""
    session_id: str
    redirect_url: str
    sandbox_redirect_url: Optional[str] = None


class PaymentDetails(BaseModel):
    payment_id: str
    status: PaymentStatus
    raw_status: Optional[str] = None
    external_reference: Optional[str] = None


class ConfirmationEvent(BaseModel):
    """Inbound processor notification, normalized."""
    kind: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def is_payment(self) -> bool:
        return self.kind == "payment" and bool(self.payment_id)


# ============================================================================
# API RESPONSES
# ============================================================================

class CheckoutResult(BaseModel):
    """Returned to the browser so it can redirect and later poll."""
    redirect_url: str
    sandbox_redirect_url: Optional[str] = None
    session_id: str
    correlation_id: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "init_point": self.redirect_url,
            "sandbox_init_point": self.sandbox_redirect_url or self.redirect_url,
            "preference_id": self.session_id,
            "session_id": self.session_id,
        }


class ArtifactStatusResponse(BaseModel):
    status: ArtifactStatus
