"""
File: condonotify/services/targets.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
Notification kinds and the targets they notify.

A NotificationKind knows:
- which business row it notifies (party hall booking, package, occurrence)
- who receives it (one person, or every resident of an apartment for packages)
- the template slug, and the hardcoded fallback text used when no template exists
- how to turn the row into placeholder variables
- whether a success sets the row's idempotent sent marker
- which rows a scheduled run picks up (batchable kinds only)

Design rules:
- Targets are plain dataclasses; the dispatcher never sees ORM rows
- The sent marker is only ever set by an atomic conditional UPDATE
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from condonotify.config import get_settings
from condonotify.errors import TargetNotFoundError, UnknownNotificationTypeError
from condonotify.models import (
    Occurrence,
    Package,
    PartyHallBooking,
    PartyHallChecklistItem,
    Profile,
    Resident,
)

logger = logging.getLogger("targets")

DEFAULT_CHECKLIST_CATEGORY = "Geral"
NOT_INFORMED = "Não informado"
DEFAULT_PORTER_NAME = "Portaria"
DEFAULT_RESIDENT_NAME = "Morador"

OCCURRENCE_TYPE_LABELS = {
    "advertencia": "Advertência",
    "notificacao": "Notificação",
    "multa": "Multa",
}

_WEEKDAYS_PT = (
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
    "domingo",
)
_MONTHS_PT = (
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)

_UNSAFE_CHARS = re.compile(r"[<>\"'`]")


# ---------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------
def format_date_pt_br(value: date) -> str:
    """2025-12-20 -> "sábado, 20 de dezembro de 2025" """
    weekday = _WEEKDAYS_PT[value.weekday()]
    month = _MONTHS_PT[value.month - 1]
    return f"{weekday}, {value.day:02d} de {month} de {value.year}"


def format_time_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def first_name(full_name: Optional[str]) -> str:
    parts = (full_name or "").split()
    return parts[0] if parts else ""


def sanitize(value: Optional[str]) -> str:
    return _UNSAFE_CHARS.sub("", value or "").strip()


def format_checklist(items: List[PartyHallChecklistItem]) -> str:
    """
    Group active checklist items by category, keeping display order.
    Returns an empty string when there is nothing to check.
    """
    if not items:
        return ""

    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for item in items:
        grouped.setdefault(item.category or DEFAULT_CHECKLIST_CATEGORY, []).append(item.item_name)

    lines: List[str] = []
    for category, names in grouped.items():
        lines.append(f"\n📌 *{category}:*")
        for name in names:
            lines.append(f"   ☐ {name}")

    return "\n📋 *Itens que serão verificados no checklist:*" + "\n".join(lines)


# ---------------------------------------------------------------------
# Target
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NotificationTarget:
    target_id: UUID
    tenant_id: UUID
    tenant_owner_id: Optional[UUID]
    recipient_phone: Optional[str]
    variables: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    notification_sent_at: Optional[datetime] = None
    # Set when one target row fans out to several people (package residents)
    recipient_id: Optional[UUID] = None
    # Users besides the tenant owner allowed to trigger this notification
    allowed_user_ids: Tuple[UUID, ...] = ()


# ---------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------
class NotificationKind:
    name: str
    slug: str
    function_name: str
    fallback: str
    idempotent: bool = True
    batchable: bool = False
    # One send per recipient, the sent marker counts the successes
    fan_out: bool = False

    def load_target(self, db: Session, target_id: UUID) -> NotificationTarget:
        raise NotImplementedError

    def load_targets(self, db: Session, target_id: UUID) -> List[NotificationTarget]:
        return [self.load_target(db, target_id)]

    def eligible_targets(self, db: Session, window_date: date) -> List[NotificationTarget]:
        raise NotImplementedError(f"{self.name} notifications are not sent in batches")

    def mark_sent(self, db: Session, target_id: UUID, now: datetime, sent_count: int = 1) -> bool:
        raise NotImplementedError


class _PartyHallKind(NotificationKind):
    include_checklist = False

    def _query(self, db: Session):
        return db.query(PartyHallBooking).options(
            joinedload(PartyHallBooking.condominium),
            joinedload(PartyHallBooking.resident),
            joinedload(PartyHallBooking.party_hall_setting),
        )

    def load_target(self, db: Session, target_id: UUID) -> NotificationTarget:
        booking = self._query(db).filter(PartyHallBooking.booking_id == target_id).one_or_none()
        if booking is None:
            raise TargetNotFoundError("Booking not found")
        return self._to_target(db, booking)

    def _to_target(self, db: Session, booking: PartyHallBooking) -> NotificationTarget:
        condo = booking.condominium
        resident = booking.resident
        hall = booking.party_hall_setting

        variables = {
            "condominio": condo.name,
            "nome": first_name(resident.full_name),
            "espaco": hall.name,
            "data": format_date_pt_br(booking.booking_date),
            "horario_inicio": format_time_hhmm(booking.start_time),
            "horario_fim": format_time_hhmm(booking.end_time),
        }
        if self.include_checklist:
            variables["checklist"] = format_checklist(self._checklist_items(db, condo.condominium_id))

        return NotificationTarget(
            target_id=booking.booking_id,
            tenant_id=condo.condominium_id,
            tenant_owner_id=condo.owner_id,
            recipient_phone=resident.phone,
            variables=variables,
            notification_sent_at=booking.notification_sent_at,
        )

    @staticmethod
    def _checklist_items(db: Session, condominium_id: UUID) -> List[PartyHallChecklistItem]:
        return (
            db.query(PartyHallChecklistItem)
            .filter(
                PartyHallChecklistItem.condominium_id == condominium_id,
                PartyHallChecklistItem.is_active.is_(True),
            )
            .order_by(PartyHallChecklistItem.display_order.asc())
            .all()
        )

    def mark_sent(self, db: Session, target_id: UUID, now: datetime, sent_count: int = 1) -> bool:
        result = db.execute(
            update(PartyHallBooking)
            .where(
                PartyHallBooking.booking_id == target_id,
                PartyHallBooking.notification_sent_at.is_(None),
            )
            .values(notification_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PartyHallReminder(_PartyHallKind):
    name = "reminder"
    slug = "party_hall_reminder"
    function_name = "notify-party-hall-reminders"
    idempotent = True
    batchable = True
    include_checklist = True
    fallback = """🎉 *LEMBRETE DE RESERVA*

🏢 *{condominio}*

Olá, *{nome}*!

Sua reserva do *{espaco}* está confirmada para:
📅 *Data:* {data}
⏰ *Horário:* {horario_inicio} às {horario_fim}
{checklist}

📋 *Lembre-se:*
• Compareça no horário para o checklist de entrada
• Traga documento de identificação
• Respeite as regras do espaço

Em caso de dúvidas, entre em contato com a administração.

Boa festa! 🎊"""

    def eligible_targets(self, db: Session, window_date: date) -> List[NotificationTarget]:
        bookings = (
            self._query(db)
            .filter(
                PartyHallBooking.booking_date == window_date,
                PartyHallBooking.status == "confirmada",
                PartyHallBooking.notification_sent_at.is_(None),
            )
            .order_by(PartyHallBooking.start_time.asc())
            .all()
        )
        logger.info("Found %d bookings on %s awaiting a reminder", len(bookings), window_date)
        return [self._to_target(db, b) for b in bookings]


class PartyHallCancelled(_PartyHallKind):
    name = "cancelled"
    slug = "party_hall_cancelled"
    function_name = "send-party-hall-notification"
    idempotent = False
    fallback = """❌ *RESERVA CANCELADA*

🏢 *{condominio}*

Olá, *{nome}*!

Informamos que sua reserva do *{espaco}* foi cancelada.

📅 *Data:* {data}
⏰ *Horário:* {horario_inicio} às {horario_fim}

Se você não solicitou este cancelamento ou tem dúvidas, entre em contato com a administração.

Atenciosamente,
Equipe {condominio}"""

    def mark_sent(self, db: Session, target_id: UUID, now: datetime, sent_count: int = 1) -> bool:
        return False


class PackageArrival(NotificationKind):
    name = "package_arrival"
    slug = "package_arrival"
    function_name = "notify-package-arrival"
    idempotent = True
    fan_out = True
    fallback = """📦 *Nova Encomenda!*

🏢 *{condominio}*

Olá, *{nome}*!

Você tem uma encomenda aguardando na portaria.

🏠 *Destino:* BLOCO {bloco}, APTO {apartamento}
📋 *Tipo:* {tipo_encomenda}
📍 *Rastreio:* {codigo_rastreio}
🧑‍💼 *Recebido por:* {porteiro}
🔑 *Código de retirada:* {numeropedido}

Apresente este código na portaria para retirar sua encomenda.

_Mensagem automática - NotificaCondo_"""

    def load_target(self, db: Session, target_id: UUID) -> NotificationTarget:
        return self.load_targets(db, target_id)[0]

    def load_targets(self, db: Session, target_id: UUID) -> List[NotificationTarget]:
        """
        Every resident of the package's apartment, ordered by name.
        Residents without a phone are kept so their failure gets recorded.
        """
        package = (
            db.query(Package)
            .options(joinedload(Package.condominium), joinedload(Package.apartment))
            .filter(Package.package_id == target_id)
            .one_or_none()
        )
        if package is None:
            raise TargetNotFoundError("Package not found")

        residents = (
            db.query(Resident)
            .filter(Resident.apartment_id == package.apartment_id)
            .order_by(Resident.full_name.asc())
            .all()
        )
        if not residents:
            raise TargetNotFoundError("No residents registered for this apartment")

        logger.info(
            "Package %s fans out to %d resident(s), %d with phone",
            package.package_id,
            len(residents),
            sum(1 for r in residents if r.phone),
        )
        return [self._to_target(package, resident) for resident in residents]

    @staticmethod
    def _to_target(package: Package, resident: Resident) -> NotificationTarget:
        condo = package.condominium
        apartment = package.apartment

        # pickup code is system generated and goes out untouched
        variables = {
            "nome": sanitize(resident.full_name),
            "condominio": sanitize(condo.name),
            "bloco": sanitize(apartment.block_name),
            "apartamento": sanitize(apartment.number),
            "numeropedido": package.pickup_code,
            "tipo_encomenda": sanitize(package.package_type or NOT_INFORMED),
            "codigo_rastreio": sanitize(package.tracking_code or NOT_INFORMED),
            "porteiro": sanitize(package.received_by_name or DEFAULT_PORTER_NAME),
        }

        return NotificationTarget(
            target_id=package.package_id,
            tenant_id=condo.condominium_id,
            tenant_owner_id=condo.owner_id,
            recipient_phone=resident.phone,
            variables=variables,
            image_url=package.photo_url or None,
            notification_sent_at=package.notification_sent_at,
            recipient_id=resident.resident_id,
        )

    def mark_sent(self, db: Session, target_id: UUID, now: datetime, sent_count: int = 1) -> bool:
        result = db.execute(
            update(Package)
            .where(
                Package.package_id == target_id,
                Package.notification_sent_at.is_(None),
            )
            .values(notification_sent_at=now, notification_count=sent_count)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class OccurrenceDefense(NotificationKind):
    """
    Tells the síndico that a resident answered an occurrence with a defense.
    The recipient is the condominium owner's profile, not a resident.
    """
    name = "occurrence_defense"
    slug = "sindico_defense"
    function_name = "notify-sindico-defense"
    idempotent = False
    fallback = """📋 *Nova Defesa Recebida*

🏢 *{condominio}*

O morador *{morador}* enviou uma defesa para a ocorrência:

📝 *{titulo}*
Tipo: {tipo}

Acesse o sistema para analisar:
👉 {link}"""

    def load_target(self, db: Session, target_id: UUID) -> NotificationTarget:
        occurrence = (
            db.query(Occurrence)
            .options(joinedload(Occurrence.condominium), joinedload(Occurrence.resident))
            .filter(Occurrence.occurrence_id == target_id)
            .one_or_none()
        )
        if occurrence is None:
            raise TargetNotFoundError("Occurrence not found")

        condo = occurrence.condominium
        sindico = db.get(Profile, condo.owner_id)
        if sindico is None:
            raise TargetNotFoundError("Síndico profile not found")

        resident = occurrence.resident
        variables = {
            "condominio": sanitize(condo.name),
            "morador": sanitize(resident.full_name) if resident else DEFAULT_RESIDENT_NAME,
            "titulo": sanitize(occurrence.title),
            "tipo": OCCURRENCE_TYPE_LABELS.get(occurrence.type, occurrence.type),
            "link": f"{get_settings().app_base_url.rstrip('/')}/occurrences/{occurrence.occurrence_id}",
        }

        allowed = ()
        if resident is not None and resident.user_id is not None:
            allowed = (resident.user_id,)

        return NotificationTarget(
            target_id=occurrence.occurrence_id,
            tenant_id=condo.condominium_id,
            tenant_owner_id=condo.owner_id,
            recipient_phone=sindico.phone,
            variables=variables,
            allowed_user_ids=allowed,
        )

    def mark_sent(self, db: Session, target_id: UUID, now: datetime, sent_count: int = 1) -> bool:
        return False


NOTIFICATION_KINDS: Dict[str, NotificationKind] = {
    kind.name: kind
    for kind in (PartyHallReminder(), PartyHallCancelled(), PackageArrival(), OccurrenceDefense())
}


def get_kind(name: str) -> NotificationKind:
    try:
        return NOTIFICATION_KINDS[name]
    except KeyError:
        raise UnknownNotificationTypeError(f"Invalid notification type: {name}") from None
