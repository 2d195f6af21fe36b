from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, List, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models import Granularity, MeterStatus, RetentionEntityType, Role, TariffType


# =========================
# Errors
# =========================
class ErrorRead(BaseModel):
    kind: str
    detail: str


# =========================
# Tenant hierarchy
# =========================
class StateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=32)


class StateRead(StateCreate):
    id: UUID
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class BoardCreate(BaseModel):
    state_id: UUID
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=32)


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    code: Optional[str] = Field(default=None, min_length=1, max_length=32)


class BoardRead(BoardCreate):
    id: UUID
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ConsumerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1)
    state_id: UUID
    board_id: UUID
    phone_number: Optional[str] = None
    external_user_id: Optional[str] = None


class ConsumerRead(BaseModel):
    id: UUID
    name: str
    address: str
    phone_number: Optional[str] = None
    external_user_id: Optional[str] = None
    state_id: UUID
    board_id: UUID
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# =========================
# Users
# =========================
class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    role: Role
    external_user_id: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = Field(default=None, max_length=200)
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None


class UserRoleUpdate(BaseModel):
    role: Role


class UserScopeUpdate(BaseModel):
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None


class UserRead(BaseModel):
    id: UUID
    name: str
    role: Role
    external_user_id: Optional[str] = None
    email: Optional[str] = None
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# =========================
# Tariffs & meters
# =========================
class TariffCreate(BaseModel):
    state_id: UUID
    type: TariffType
    unit_rate: Decimal
    fixed_charge: Decimal
    effective_from: datetime
    effective_to: Optional[datetime] = None


class TariffRead(TariffCreate):
    id: UUID
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MeterCreate(BaseModel):
    meter_number: str = Field(min_length=1, max_length=64)
    consumer_id: UUID
    tariff_id: UUID
    status: MeterStatus = MeterStatus.ACTIVE


class MeterTariffAssign(BaseModel):
    tariff_id: UUID


class MeterRead(BaseModel):
    id: UUID
    meter_number: str
    status: MeterStatus
    consumer_id: UUID
    tariff_id: UUID
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MeterStatusUpdate(BaseModel):
    status: MeterStatus


class ConsumptionSummaryRead(BaseModel):
    meter_id: UUID
    meter_number: str
    period_start: datetime
    period_end: datetime
    total_units: Decimal
    reading_count: int
    max_demand: Optional[Decimal] = None
    avg_voltage: Optional[Decimal] = None
    model_config = ConfigDict(from_attributes=True)


# =========================
# Billing
# =========================
class BillGenerate(BaseModel):
    meter_id: UUID
    billing_start: datetime
    billing_end: datetime
    tax_rate: Decimal = Decimal(0)


class BillRecalculate(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class AggregateRequest(BaseModel):
    meter_id: UUID
    period_start: datetime
    period_end: datetime
    granularity: Granularity


class AggregateRead(BaseModel):
    id: UUID
    meter_id: UUID
    period_start: datetime
    period_end: datetime
    granularity: Granularity
    total_units: Decimal
    max_demand: Optional[Decimal] = None
    avg_voltage: Optional[Decimal] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class BillRead(BaseModel):
    id: UUID
    meter_id: UUID
    tariff_id: UUID
    billing_start: datetime
    billing_end: datetime
    total_units: Decimal
    energy_charge: Decimal
    fixed_charge: Decimal
    tax_amount: Optional[Decimal] = None
    total_amount: Decimal
    version: int
    is_latest: bool
    generated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RecalculationLogRead(BaseModel):
    id: UUID
    billing_report_id: UUID
    reason: str
    triggered_by: UUID
    previous_version: int
    new_version: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class BillDetailRead(BillRead):
    recalculations: List[RecalculationLogRead] = []


class RecalculationRead(BaseModel):
    bill: BillRead
    log: RecalculationLogRead
    superseded_id: UUID


class BillViewRead(BaseModel):
    id: UUID
    billing_report_id: UUID
    consumer_id: UUID
    viewed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# =========================
# Retention
# =========================
class RetentionPolicyCreate(BaseModel):
    entity_type: RetentionEntityType
    retention_days: int
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None


class RetentionPolicyUpdate(BaseModel):
    entity_type: Optional[RetentionEntityType] = None
    retention_days: Optional[int] = None


class RetentionPolicyRead(BaseModel):
    id: UUID
    entity_type: RetentionEntityType
    retention_days: int
    state_id: Optional[UUID] = None
    board_id: Optional[UUID] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RetentionPolicyResult(BaseModel):
    policy_id: UUID
    entity_type: RetentionEntityType
    retention_days: int
    cutoff_date: Optional[datetime] = None
    deleted_count: int
    error: Optional[str] = None


class RetentionRunRead(BaseModel):
    executed_at: datetime
    results: List[RetentionPolicyResult]


# =========================
# Audit
# =========================
class AuditLogRead(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    action: str
    entity: str
    entity_id: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
