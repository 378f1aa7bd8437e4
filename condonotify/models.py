"""
File: condonotify/models.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
SQLAlchemy ORM models for everything the notification dispatcher reads or writes.
Table names follow the platform schema so the dispatcher can run against the
same database as the portals.

Design principles:
- Business tables (condominiums, apartments, residents, bookings, packages,
  occurrences) carry only the
  columns the dispatcher consumes; the portals own the rest
- No business logic in models
- Delivery records are append-only; nothing in the codebase updates them
- All writes are controlled by application logic, not model side-effects
"""


import uuid
from sqlalchemy import (
    JSON,
    Column,
    String,
    Text,
    Boolean,
    Integer,
    Date,
    DateTime,
    Time,
    Enum,
    Uuid,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Index,
    func,
    true,
    false,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

BOOKING_STATUSES = ("pendente", "confirmada", "em_uso", "finalizada", "cancelada")
DELIVERY_STATUSES = ("sent", "failed")
JOB_STATUSES = ("running", "completed", "skipped", "error")


# ---------------------------------------------------------------------
# Gateway configuration (system-wide, edited by the super admin)
# ---------------------------------------------------------------------
class GatewayConfig(Base):
    __tablename__ = "whatsapp_config"

    config_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Plain text on purpose: an unknown provider must surface as a
    # configuration error at dispatch time, not as a load failure.
    provider = Column(Text, nullable=False, server_default="zpro")
    api_url = Column(Text, nullable=False)
    api_key = Column(Text, nullable=False)
    instance_id = Column(Text, nullable=False, server_default="")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    use_official_api = Column(Boolean, nullable=False, default=False, server_default=false())
    # Meta-approved templates via Z-PRO /templateBody, free text as fallback
    use_waba_templates = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------
class MessageTemplate(Base):
    __tablename__ = "whatsapp_templates"

    template_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    variables = Column(JSON, nullable=False, default=list)
    waba_template_name = Column(Text, nullable=True)
    waba_language = Column(Text, nullable=False, default="pt_BR", server_default="pt_BR")
    # Variable names in the order the approved template expects them
    params_order = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TenantTemplateOverride(Base):
    __tablename__ = "condominium_whatsapp_templates"

    override_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    template_slug = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "condominium_id",
            "template_slug",
            name="uq_condominium_template_slug",
        ),
    )


# ---------------------------------------------------------------------
# Tenant + people
# ---------------------------------------------------------------------
class Condominium(Base):
    __tablename__ = "condominiums"

    condominium_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    owner_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Apartment(Base):
    __tablename__ = "apartments"

    apartment_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    block_name = Column(Text, nullable=False)
    number = Column(Text, nullable=False)

    condominium = relationship("Condominium")


class Resident(Base):
    __tablename__ = "residents"

    resident_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    apartment_id = Column(
        Uuid,
        ForeignKey("apartments.apartment_id"),
        nullable=True,
    )
    # Portal login of the resident, when they have one
    user_id = Column(Uuid, nullable=True)
    full_name = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)

    condominium = relationship("Condominium")


class Profile(Base):
    """Portal user profile; the síndico's phone lives here."""
    __tablename__ = "profiles"

    user_id = Column(Uuid, primary_key=True)
    full_name = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)


# ---------------------------------------------------------------------
# Party hall
# ---------------------------------------------------------------------
class PartyHallSetting(Base):
    __tablename__ = "party_hall_settings"

    setting_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    name = Column(Text, nullable=False)


class PartyHallBooking(Base):
    __tablename__ = "party_hall_bookings"

    booking_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    resident_id = Column(
        Uuid,
        ForeignKey("residents.resident_id"),
        nullable=False,
    )
    party_hall_setting_id = Column(
        Uuid,
        ForeignKey("party_hall_settings.setting_id"),
        nullable=False,
    )
    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(
        Enum(*BOOKING_STATUSES, name="booking_status"),
        nullable=False,
        server_default="pendente",
    )
    # Idempotent marker for the reminder notification
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    condominium = relationship("Condominium")
    resident = relationship("Resident")
    party_hall_setting = relationship("PartyHallSetting")


Index(
    "ix_party_hall_bookings_reminder_window",
    PartyHallBooking.booking_date,
    PartyHallBooking.status,
)


class PartyHallChecklistItem(Base):
    __tablename__ = "party_hall_checklist_templates"

    item_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    item_name = Column(Text, nullable=False)
    category = Column(Text, nullable=True, server_default="Geral")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    display_order = Column(Integer, nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------
# Packages (porter desk)
# ---------------------------------------------------------------------
class Package(Base):
    __tablename__ = "packages"

    package_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    apartment_id = Column(
        Uuid,
        ForeignKey("apartments.apartment_id"),
        nullable=False,
    )
    pickup_code = Column(Text, nullable=False)
    tracking_code = Column(Text, nullable=True)
    package_type = Column(Text, nullable=True)
    received_by_name = Column(Text, nullable=True)
    photo_url = Column(Text, nullable=True)
    # Idempotent marker for the arrival notification
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)
    # Residents reached by the arrival notification
    notification_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    condominium = relationship("Condominium")
    apartment = relationship("Apartment")


# ---------------------------------------------------------------------
# Occurrences (infractions)
# ---------------------------------------------------------------------
class Occurrence(Base):
    __tablename__ = "occurrences"

    occurrence_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    condominium_id = Column(
        Uuid,
        ForeignKey("condominiums.condominium_id"),
        nullable=False,
    )
    resident_id = Column(
        Uuid,
        ForeignKey("residents.resident_id"),
        nullable=True,
    )
    title = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    condominium = relationship("Condominium")
    resident = relationship("Resident")


# ---------------------------------------------------------------------
# Delivery record (immutable audit of every attempted send)
# ---------------------------------------------------------------------
class DeliveryRecord(Base):
    __tablename__ = "whatsapp_notification_logs"

    delivery_record_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    function_name = Column(Text, nullable=False)
    notification_type = Column(Text, nullable=False)
    target_id = Column(Uuid, nullable=False)
    condominium_id = Column(Uuid, nullable=True)
    recipient_phone = Column(Text, nullable=True)
    template_slug = Column(Text, nullable=False)
    template_source = Column(Text, nullable=False)
    message_content = Column(Text, nullable=False)
    provider = Column(Text, nullable=True)
    provider_message_id = Column(Text, nullable=True)
    status = Column(
        Enum(*DELIVERY_STATUSES, name="delivery_status"),
        nullable=False,
    )
    error_message = Column(Text, nullable=True)
    error_code = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


Index(
    "ix_delivery_records_target",
    DeliveryRecord.target_id,
    DeliveryRecord.template_slug,
)


# ---------------------------------------------------------------------
# Scheduled job bookkeeping
# ---------------------------------------------------------------------
class JobExecutionLog(Base):
    __tablename__ = "edge_function_logs"

    job_log_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    function_name = Column(Text, nullable=False)
    trigger_type = Column(Text, nullable=False, server_default="cron")
    status = Column(
        Enum(*JOB_STATUSES, name="job_status"),
        nullable=False,
        server_default="running",
    )
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "trigger_type IN ('cron', 'manual')",
            name="ck_edge_function_logs_trigger_type",
        ),
    )


class CronJobControl(Base):
    __tablename__ = "cron_job_controls"

    function_name = Column(Text, primary_key=True)
    paused = Column(Boolean, nullable=False, default=False, server_default=false())
    paused_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------
# Auth read-side (tokens are issued by the platform auth service)
# ---------------------------------------------------------------------
class AccessToken(Base):
    __tablename__ = "access_tokens"

    token = Column(String(255), primary_key=True)
    user_id = Column(Uuid, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)


class UserRole(Base):
    __tablename__ = "user_roles"

    user_role_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    role = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
