from enum import Enum
import uuid

from tortoise import fields, models


# ========================
# Enumerations
# ========================
class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    STATE_ADMIN = "STATE_ADMIN"
    BOARD_ADMIN = "BOARD_ADMIN"
    SUPPORT_AGENT = "SUPPORT_AGENT"
    AUDITOR = "AUDITOR"


class TariffType(str, Enum):
    RESIDENTIAL = "RESIDENTIAL"
    COMMERCIAL = "COMMERCIAL"
    INDUSTRIAL = "INDUSTRIAL"


class MeterStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    FAULTY = "FAULTY"
    DISCONNECTED = "DISCONNECTED"


class Granularity(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class RetentionEntityType(str, Enum):
    METER_READING = "MeterReading"
    AUDIT_LOG = "AuditLog"
    GENERATED_REPORT_FILE = "GeneratedReportFile"
    CUSTOMER_QUERY = "CustomerQuery"


class QueryStatus(str, Enum):
    PENDING = "PENDING"
    AI_REVIEWED = "AI_REVIEWED"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class ReportFileFormat(str, Enum):
    PDF = "PDF"
    CSV = "CSV"
    XML = "XML"
    JSON = "JSON"


# -------- Tenant hierarchy --------
class State(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=200)
    code = fields.CharField(max_length=32, unique=True, index=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    boards: fields.ReverseRelation["Board"]

    class Meta:
        table = "states"

    def __str__(self) -> str:
        return self.code


class Board(models.Model):
    """Electricity distribution board, nested under exactly one state."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=200)
    code = fields.CharField(max_length=32, unique=True, index=True)
    state = fields.ForeignKeyField("models.State", related_name="boards", on_delete=fields.RESTRICT, index=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "electricity_boards"

    def __str__(self) -> str:
        return self.code


# -------- Users --------
class User(models.Model):
    """Administrative user. Authentication happens at the external identity provider."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    external_user_id = fields.CharField(max_length=128, unique=True, null=True, index=True)
    name = fields.CharField(max_length=200)
    email = fields.CharField(max_length=200, null=True)
    role = fields.CharEnumField(Role, max_length=16, index=True)
    state = fields.ForeignKeyField("models.State", null=True, related_name="users", on_delete=fields.SET_NULL, index=True)
    board = fields.ForeignKeyField("models.Board", null=True, related_name="users", on_delete=fields.SET_NULL, index=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "users"

    def __str__(self) -> str:
        return f"{self.name} ({self.role})"


class Consumer(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    external_user_id = fields.CharField(max_length=128, unique=True, null=True, index=True)
    name = fields.CharField(max_length=200)
    phone_number = fields.CharField(max_length=32, null=True)
    address = fields.TextField()
    state = fields.ForeignKeyField("models.State", related_name="consumers", on_delete=fields.RESTRICT, index=True)
    board = fields.ForeignKeyField("models.Board", related_name="consumers", on_delete=fields.RESTRICT, index=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "consumers"

    def __str__(self) -> str:
        return self.name


# -------- Tariffs & metering --------
class Tariff(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    state = fields.ForeignKeyField("models.State", related_name="tariffs", on_delete=fields.RESTRICT, index=True)
    type = fields.CharEnumField(TariffType, max_length=16, index=True)
    unit_rate = fields.DecimalField(max_digits=12, decimal_places=4)
    fixed_charge = fields.DecimalField(max_digits=14, decimal_places=2)
    effective_from = fields.DatetimeField(index=True)
    effective_to = fields.DatetimeField(null=True, index=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "tariffs"

    def __str__(self) -> str:
        return f"{self.type} @ {self.unit_rate}"


class SmartMeter(models.Model):
    """A meter's (state, board) is always derived through its consumer."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    meter_number = fields.CharField(max_length=64, unique=True, index=True)
    status = fields.CharEnumField(MeterStatus, max_length=16, default=MeterStatus.ACTIVE)
    consumer = fields.ForeignKeyField("models.Consumer", related_name="meters", on_delete=fields.RESTRICT, index=True)
    tariff = fields.ForeignKeyField("models.Tariff", related_name="meters", on_delete=fields.RESTRICT, index=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "smart_meters"

    def __str__(self) -> str:
        return self.meter_number


class MeterReading(models.Model):
    """Immutable time-series point. Removed only by the retention sweep."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    meter = fields.ForeignKeyField("models.SmartMeter", related_name="readings", on_delete=fields.RESTRICT)
    timestamp = fields.DatetimeField(index=True)
    consumption = fields.FloatField()  # kWh
    voltage = fields.FloatField(null=True)
    current = fields.FloatField(null=True)

    class Meta:
        table = "meter_readings"
        indexes = (("meter_id", "timestamp"),)


class ConsumptionAggregate(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    meter = fields.ForeignKeyField("models.SmartMeter", related_name="aggregates", on_delete=fields.RESTRICT, index=True)
    period_start = fields.DatetimeField(index=True)
    period_end = fields.DatetimeField()
    granularity = fields.CharEnumField(Granularity, max_length=8)
    total_units = fields.DecimalField(max_digits=16, decimal_places=2)
    max_demand = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    avg_voltage = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "consumption_aggregates"
        unique_together = ("meter", "period_start", "granularity")


# ========================
# Billing
# ========================
class BillingReport(models.Model):
    """
    One version of a logical bill (meter, billing_start, billing_end).
    Rows are never edited after creation except for the is_latest flip
    that supersedes them.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    meter = fields.ForeignKeyField("models.SmartMeter", related_name="bills", on_delete=fields.RESTRICT, index=True)
    tariff = fields.ForeignKeyField("models.Tariff", related_name="bills", on_delete=fields.RESTRICT)
    billing_start = fields.DatetimeField(index=True)
    billing_end = fields.DatetimeField(index=True)
    total_units = fields.DecimalField(max_digits=16, decimal_places=2)
    energy_charge = fields.DecimalField(max_digits=14, decimal_places=2)
    fixed_charge = fields.DecimalField(max_digits=14, decimal_places=2)
    tax_amount = fields.DecimalField(max_digits=14, decimal_places=2, null=True)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2)
    version = fields.IntField(default=1)
    is_latest = fields.BooleanField(default=True, index=True)
    generated_at = fields.DatetimeField(auto_now_add=True, index=True)

    recalculations: fields.ReverseRelation["RecalculationLog"]

    class Meta:
        table = "billing_reports"
        # the loser of a concurrent generate/recalculate race trips this
        unique_together = ("meter", "billing_start", "billing_end", "version")
        indexes = (("meter_id", "billing_start"),)


class RecalculationLog(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    billing_report = fields.ForeignKeyField("models.BillingReport", related_name="recalculations", on_delete=fields.RESTRICT, index=True)
    reason = fields.TextField()
    triggered_by = fields.UUIDField()
    previous_version = fields.IntField()
    new_version = fields.IntField()
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "recalculation_logs"


class CustomerBillView(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    billing_report = fields.ForeignKeyField("models.BillingReport", related_name="views", on_delete=fields.RESTRICT, index=True)
    consumer = fields.ForeignKeyField("models.Consumer", related_name="bill_views", on_delete=fields.RESTRICT, index=True)
    viewed_at = fields.DatetimeField(null=True)

    class Meta:
        table = "customer_bill_views"


# ========================
# Retained entities
# ========================
class CustomerQuery(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    consumer = fields.ForeignKeyField("models.Consumer", related_name="queries", on_delete=fields.RESTRICT, index=True)
    query_text = fields.TextField()
    status = fields.CharEnumField(QueryStatus, max_length=16, default=QueryStatus.PENDING)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "customer_queries"


class GeneratedReportFile(models.Model):
    """Rendered report artefact. Carries its scope directly."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    report_type = fields.CharField(max_length=64)
    state = fields.ForeignKeyField("models.State", null=True, related_name="report_files", on_delete=fields.SET_NULL, index=True)
    board = fields.ForeignKeyField("models.Board", null=True, related_name="report_files", on_delete=fields.SET_NULL, index=True)
    file_url = fields.CharField(max_length=512)
    format = fields.CharEnumField(ReportFileFormat, max_length=8)
    created_by = fields.UUIDField()
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "generated_report_files"


class AuditLog(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    # null for system actions (scheduled sweep)
    user = fields.ForeignKeyField("models.User", null=True, related_name="audit_logs", on_delete=fields.RESTRICT, index=True)
    action = fields.CharField(max_length=64, index=True)
    entity = fields.CharField(max_length=64, index=True)
    entity_id = fields.CharField(max_length=64, index=True)
    metadata = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "audit_logs"


class DataRetentionPolicy(models.Model):
    """No state and no board means a global policy."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    state = fields.ForeignKeyField("models.State", null=True, related_name="retention_policies", on_delete=fields.CASCADE, index=True)
    board = fields.ForeignKeyField("models.Board", null=True, related_name="retention_policies", on_delete=fields.CASCADE, index=True)
    entity_type = fields.CharEnumField(RetentionEntityType, max_length=32, index=True)
    retention_days = fields.IntField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "data_retention_policies"
