"""Pydantic schemas for the deal desk -- the Deal aggregate and its parts.

Defines all structured types for the deal lifecycle:
- Enums: DealStatus, ServiceType
- Value objects: ContactInfo, Checklist
- Service details: one variant per ServiceType (PricedDetails, TestDetails,
  LectureDetails, ConsultingDetails, ActivityDetails, FlatFeeDetails,
  ReportDetails), selected through parse_details()
- Aggregate: Service, PaymentSchedule, Deal
- Payloads: ServiceCreate, PaymentScheduleCreate, DealCreate, DealUpdate, DealFilter

Domain models accept camelCase keys (``activityCost``, ``quoteInitial``,
``isPaid``) as well as the snake_case field names, and always serialize by
field name, so JSON columns are written in snake_case.

Loosely-typed numeric and boolean fields are normalized once, at
construction: anything that is not a usable number becomes 0 and anything
that is not literally a boolean becomes False. Money is always ``int``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any

import structlog
from pydantic import (
    AliasGenerator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    SerializeAsAny,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)


# ── Enums ───────────────────────────────────────────────────────────────────


class DealStatus(str, Enum):
    """Pipeline classification of a deal. Transitions are not enforced."""

    PROSPECT = "PROSPECT"
    ONGOING = "ONGOING"
    CARRIED_OVER = "CARRIED_OVER"
    COMPLETED = "COMPLETED"
    HOLD = "HOLD"


class ServiceType(str, Enum):
    """Kind of work sold on a deal; determines the pricing formula."""

    TEST = "TEST"
    LECTURE = "LECTURE"
    CONSULTING = "CONSULTING"
    ACTIVITY = "ACTIVITY"
    ETC = "ETC"
    REPORT = "REPORT"


# ── Coercion Helpers ────────────────────────────────────────────────────────


def coerce_amount(value: Any) -> int:
    """Coerce a loosely-typed numeric value to an exact integer.

    Integers pass through. Finite floats, Decimals and numeric strings are
    rounded half-up to the nearest integer. Everything else (None, booleans,
    NaN, infinities, garbage strings, containers) becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        number = Decimal(str(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return 0
    else:
        return 0
    if not number.is_finite():
        return 0
    return int(number.to_integral_value(rounding=ROUND_HALF_UP))


def coerce_flag(value: Any) -> bool:
    """Only a real ``True`` counts as a set flag."""
    return value is True


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _or_empty(value: Any) -> Any:
    return value if isinstance(value, (dict, BaseModel)) else {}


Amount = Annotated[int, BeforeValidator(coerce_amount)]
Flag = Annotated[bool, BeforeValidator(coerce_flag)]
Text = Annotated[str | None, BeforeValidator(coerce_text)]


class DomainModel(BaseModel):
    """Base for stored documents: accepts camelCase or snake_case keys."""

    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        extra="ignore",
    )


# ── Value Objects ───────────────────────────────────────────────────────────


class ContactInfo(DomainModel):
    """Structured contact details for the customer-side manager."""

    phone: Text = None
    email: Text = None


class Checklist(DomainModel):
    """Administrative progress flags of a deal. Missing flags are False."""

    quote_initial: Flag = False
    quote_final: Flag = False
    contract_sent: Flag = False
    contract_received: Flag = False
    code_issued: Flag = False
    report_submitted: Flag = False


# ── Service Details (one variant per service type) ──────────────────────────


class ServiceDetails(DomainModel):
    """Fields shared by every service type. Contributes nothing on its own."""

    target: Text = None
    memo: Text = None

    def line_total(self) -> int:
        """Monetary contribution of this service to the deal quote."""
        return 0


class PricedDetails(ServiceDetails):
    """Unit price times quantity. Default for unrecognized service types."""

    price: Amount = 0
    count: Amount = 0

    def line_total(self) -> int:
        return self.price * self.count


class TestDetails(PricedDetails):
    duration: Text = None
    result_method: Text = None
    premium: Flag = False
    standard: Flag = False


class LectureDetails(PricedDetails):
    content: Text = None
    schedule: Text = None
    dispatch_count: Amount = 0


class ConsultingDetails(PricedDetails):
    in_person: Flag = False
    remote: Flag = False


class ActivityDetails(ServiceDetails):
    """Activities are billed at a direct cost; price and count are ignored."""

    activity_cost: Amount = 0

    def line_total(self) -> int:
        return self.activity_cost


class FlatFeeDetails(ServiceDetails):
    """A single fixed price; count is ignored."""

    price: Amount = 0

    def line_total(self) -> int:
        return self.price


class ReportDetails(FlatFeeDetails):
    submit_date: Text = None


DETAILS_BY_TYPE: dict[str, type[ServiceDetails]] = {
    ServiceType.TEST.value: TestDetails,
    ServiceType.LECTURE.value: LectureDetails,
    ServiceType.CONSULTING.value: ConsultingDetails,
    ServiceType.ACTIVITY.value: ActivityDetails,
    ServiceType.ETC.value: FlatFeeDetails,
    ServiceType.REPORT.value: ReportDetails,
}


def _type_key(service_type: Any) -> str:
    if isinstance(service_type, ServiceType):
        return service_type.value
    return service_type if isinstance(service_type, str) else ""


def parse_details(service_type: Any, raw: Any) -> ServiceDetails:
    """Build the details variant for a service type from a stored payload.

    Unknown types use PricedDetails. Never raises: a payload that is not a
    mapping is treated as empty.
    """
    details_cls = DETAILS_BY_TYPE.get(_type_key(service_type), PricedDetails)
    if isinstance(raw, ServiceDetails):
        if isinstance(raw, details_cls):
            return raw
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raw = {}
    try:
        return details_cls.model_validate(raw)
    except ValidationError:
        logger.warning(
            "service_details_unparseable",
            service_type=_type_key(service_type),
            keys=sorted(str(k) for k in raw),
        )
        return details_cls()


# ── Aggregate ───────────────────────────────────────────────────────────────


class Service(DomainModel):
    """One line item of work on a deal."""

    id: str | None = None
    deal_id: str | None = None
    type: str
    details: SerializeAsAny[ServiceDetails] = Field(default_factory=PricedDetails)

    @model_validator(mode="before")
    @classmethod
    def _select_details_variant(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["type"] = _type_key(data.get("type"))
            data["details"] = parse_details(data["type"], data.get("details"))
        return data


class PaymentSchedule(DomainModel):
    """One expected (or received) payment on a deal."""

    id: str | None = None
    deal_id: str | None = None
    due_date: datetime
    amount: Amount = 0
    description: str | None = None
    is_paid: Flag = False

    @field_validator("due_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Deal(DomainModel):
    """Deal aggregate with its services and payment schedules loaded."""

    id: str
    user_id: str | None = None
    company_name: str
    manager_name: str | None = None
    contact_info: Annotated[ContactInfo, BeforeValidator(_or_empty)] = Field(
        default_factory=ContactInfo
    )
    status: DealStatus = DealStatus.PROSPECT
    memo: str | None = None
    checklists: Annotated[Checklist, BeforeValidator(_or_empty)] = Field(
        default_factory=Checklist
    )
    services: list[Service] = Field(default_factory=list)
    payment_schedules: list[PaymentSchedule] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Request Payloads ────────────────────────────────────────────────────────


class ServiceCreate(BaseModel):
    """Schema for adding a service to a deal."""

    type: ServiceType
    details: dict[str, Any] = Field(default_factory=dict)

    def normalized_details(self) -> dict[str, Any]:
        """Details as stored: parsed through the type's variant, snake_case keys."""
        return parse_details(self.type, self.details).model_dump()


class PaymentScheduleCreate(BaseModel):
    """Schema for adding a payment schedule entry to a deal."""

    due_date: datetime
    amount: int = Field(ge=0)
    description: str | None = None
    is_paid: bool = False

    @field_validator("due_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DealCreate(BaseModel):
    """Schema for creating a deal together with its services and schedule."""

    company_name: str = Field(min_length=1, max_length=300)
    manager_name: str | None = None
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    status: DealStatus = DealStatus.PROSPECT
    memo: str | None = None
    checklists: Checklist = Field(default_factory=Checklist)
    services: list[ServiceCreate] = Field(default_factory=list)
    payment_schedules: list[PaymentScheduleCreate] = Field(default_factory=list)


class DealUpdate(BaseModel):
    """Schema for updating a deal (all fields optional).

    When ``services`` or ``payment_schedules`` is provided, the deal's
    existing collection is deleted and replaced by the supplied entries.
    """

    company_name: str | None = Field(default=None, min_length=1, max_length=300)
    manager_name: str | None = None
    contact_info: ContactInfo | None = None
    status: DealStatus | None = None
    memo: str | None = None
    checklists: Checklist | None = None
    services: list[ServiceCreate] | None = None
    payment_schedules: list[PaymentScheduleCreate] | None = None


class DealFilter(BaseModel):
    """Filter criteria for listing deals."""

    status: DealStatus | None = None
