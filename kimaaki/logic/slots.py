# kimaaki/logic/slots.py
import logging
import math
from datetime import date, timedelta

import psycopg2.extras

from ..config import ACTIVE_SCHEDULE_STATUSES, CANCELLABLE_SCHEDULE_STATUSES, SLOT_WINDOW_DAYS
from ..utils.helpers import first_row, utc_now_iso

logger = logging.getLogger(__name__)

SLOTS_TABLE = "delivery_slots"
SCHEDULED_TABLE = "scheduled_deliveries"


class SlotUnavailableError(ValueError):
    pass


class AlreadyScheduledError(SlotUnavailableError):
    pass


class ScheduleNotCancellableError(ValueError):
    pass


def is_offerable(slot) -> bool:
    if not slot or not slot.get("is_available", True):
        return False
    return int(slot.get("current_orders") or 0) < int(slot.get("max_orders") or 0)


def slot_occupancy(slot):
    max_orders = int(slot.get("max_orders") or 0)
    available = max(max_orders - int(slot.get("current_orders") or 0), 0)
    percentage = round(available / max_orders * 100, 1) if max_orders else 0.0
    return {"available": available, "available_percentage": percentage}


def list_available_slots(client, restaurant_id=None, start_date=None, days: int = SLOT_WINDOW_DAYS):
    """Horários com vaga nos próximos `days` dias, globais ou do restaurante.

    O PostgREST não compara duas colunas, então current_orders < max_orders é
    filtrado aqui.
    """
    start = start_date or date.today()
    if isinstance(start, str):
        start = date.fromisoformat(start)
    end = start + timedelta(days=days)

    response = (
        client.table(SLOTS_TABLE)
        .select("*")
        .eq("is_available", True)
        .gte("date", start.isoformat())
        .lte("date", end.isoformat())
        .order("date")
        .order("start_time")
        .execute()
    )

    slots = []
    for slot in response.data or []:
        owner = slot.get("restaurant_id")
        if owner and str(owner) != str(restaurant_id):
            continue
        if not is_offerable(slot):
            continue
        slots.append({**slot, **slot_occupancy(slot)})
    return slots


# --- Contador de vagas (escritas atômicas via Postgres) ---

def reserve_slot(conn, slot_id):
    """Ocupa uma vaga do horário numa única instrução condicional.
    Retorna a linha atualizada ou None se o horário estiver lotado/indisponível."""
    with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute("""
            UPDATE delivery_slots
            SET current_orders = current_orders + 1
            WHERE id = %s
              AND is_available = TRUE
              AND current_orders < max_orders
            RETURNING *
        """, (str(slot_id),))
        row = cur.fetchone()
    conn.commit()
    return dict(row) if row else None


def release_slot(conn, slot_id):
    """Libera uma vaga; o contador nunca fica negativo."""
    with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute("""
            UPDATE delivery_slots
            SET current_orders = GREATEST(current_orders - 1, 0)
            WHERE id = %s
            RETURNING *
        """, (str(slot_id),))
        row = cur.fetchone()
    conn.commit()
    return dict(row) if row else None


# --- Agendamentos ---

def find_active_schedule(client, order_id):
    response = (
        client.table(SCHEDULED_TABLE)
        .select("*")
        .eq("order_id", order_id)
        .in_("status", list(ACTIVE_SCHEDULE_STATUSES))
        .limit(1)
        .execute()
    )
    return first_row(response)


def schedule_delivery(client, conn, user_id, order_id, slot_id, delivery_address, special_instructions=""):
    """Um pedido tem no máximo um agendamento ativo; a vaga só é ocupada depois dessa checagem."""
    if find_active_schedule(client, order_id):
        raise AlreadyScheduledError("Este pedido já tem uma entrega agendada")

    slot = reserve_slot(conn, slot_id)
    if not slot:
        raise SlotUnavailableError("Horário indisponível ou lotado")

    record = {
        "user_id": user_id,
        "order_id": order_id,
        "delivery_slot_id": str(slot_id),
        "delivery_address": delivery_address,
        "special_instructions": special_instructions or "",
        "status": "scheduled",
        "created_at": utc_now_iso(),
    }
    try:
        scheduled = first_row(client.table(SCHEDULED_TABLE).insert(record).execute())
    except Exception:
        logger.error(f"Falha ao gravar agendamento, liberando vaga do horário {slot_id}", exc_info=True)
        release_slot(conn, slot_id)
        raise

    logger.info(f"📅 Entrega do pedido {order_id} agendada no horário {slot_id}")
    return {**(scheduled or record), "delivery_slot": slot}


def list_scheduled_deliveries(client, user_id):
    response = (
        client.table(SCHEDULED_TABLE)
        .select("*, delivery_slot:delivery_slots(*)")
        .eq("user_id", user_id)
        .in_("status", list(ACTIVE_SCHEDULE_STATUSES))
        .order("created_at", desc=True)
        .execute()
    )
    return response.data or []


def cancel_scheduled_delivery(client, conn, delivery_id, user_id=None):
    """Cancela o agendamento numa única atualização condicional e libera a vaga.

    Retorna None se o agendamento não existe (ou não é do usuário). Levanta
    ScheduleNotCancellableError se o status já não permite cancelamento; nesse
    caso a vaga não é tocada.
    """
    query = (
        client.table(SCHEDULED_TABLE)
        .update({"status": "cancelled"})
        .eq("id", delivery_id)
        .in_("status", list(CANCELLABLE_SCHEDULE_STATUSES))
    )
    if user_id is not None:
        query = query.eq("user_id", user_id)
    cancelled = first_row(query.execute())

    if cancelled:
        release_slot(conn, cancelled["delivery_slot_id"])
        logger.info(f"Agendamento {delivery_id} cancelado")
        return cancelled

    lookup = client.table(SCHEDULED_TABLE).select("id, status").eq("id", delivery_id)
    if user_id is not None:
        lookup = lookup.eq("user_id", user_id)
    existing = first_row(lookup.limit(1).execute())
    if not existing:
        return None
    raise ScheduleNotCancellableError(
        f"Agendamento com status '{existing.get('status')}' não pode ser cancelado"
    )


# --- Administração ---

def validate_slot_payload(data: dict, partial: bool = False) -> dict:
    allowed = ("date", "start_time", "end_time", "max_orders", "price_modifier", "is_available", "restaurant_id")
    payload = {k: data[k] for k in allowed if k in data}

    if not partial:
        for field in ("date", "start_time", "end_time", "max_orders"):
            if payload.get(field) in (None, ""):
                raise ValueError(f"Campo '{field}' é obrigatório")
        payload.setdefault("price_modifier", 1.0)
        payload.setdefault("is_available", True)
        payload["current_orders"] = 0

    if "date" in payload:
        try:
            date.fromisoformat(str(payload["date"]))
        except ValueError:
            raise ValueError("'date' deve estar no formato YYYY-MM-DD")
    if "max_orders" in payload:
        try:
            payload["max_orders"] = int(payload["max_orders"])
        except (TypeError, ValueError):
            raise ValueError("'max_orders' deve ser inteiro")
        if payload["max_orders"] < 1:
            raise ValueError("'max_orders' deve ser maior que zero")
    if "price_modifier" in payload:
        try:
            payload["price_modifier"] = float(payload["price_modifier"])
        except (TypeError, ValueError):
            raise ValueError("'price_modifier' deve ser numérico")
        if not math.isfinite(payload["price_modifier"]) or payload["price_modifier"] <= 0:
            raise ValueError("'price_modifier' deve ser positivo")
    if payload.get("start_time") and payload.get("end_time") and str(payload["start_time"]) >= str(payload["end_time"]):
        raise ValueError("'start_time' deve ser anterior a 'end_time'")
    return payload
