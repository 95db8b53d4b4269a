# kimaaki/routes/scheduling.py
import logging
from datetime import date

from flask import Blueprint, request

from ..config import SLOT_WINDOW_DAYS
from ..logic.orders import get_order
from ..logic.slots import (
    SLOTS_TABLE, ScheduleNotCancellableError, SlotUnavailableError, cancel_scheduled_delivery,
    list_available_slots, list_scheduled_deliveries, schedule_delivery, validate_slot_payload,
)
from ..utils.audit import log_admin_action
from ..utils.decorators import admin_required, user_token_required
from ..utils.helpers import first_row, get_db_connection, get_supabase, json_error, json_success

logger = logging.getLogger(__name__)

scheduling_bp = Blueprint('scheduling', __name__)


@scheduling_bp.route('/slots', methods=['GET'])
def available_slots():
    try:
        start_date = request.args.get('start_date')
        if start_date:
            try:
                date.fromisoformat(start_date)
            except ValueError:
                return json_error("start_date deve estar no formato YYYY-MM-DD", 400)
        days = request.args.get('days', SLOT_WINDOW_DAYS, type=int)
        if days < 1 or days > 31:
            return json_error("days deve estar entre 1 e 31", 400)

        slots = list_available_slots(
            get_supabase(), request.args.get('restaurant_id'), start_date, days,
        )
        return json_success(slots)
    except Exception as e:
        logger.error(f"Erro ao listar horários: {e}", exc_info=True)
        return json_error("Erro ao listar horários de entrega", 500)


@scheduling_bp.route('/', methods=['POST'])
@user_token_required
def create_schedule():
    conn = None
    try:
        data = request.get_json(silent=True) or {}
        order_id, slot_id = data.get('order_id'), data.get('slot_id')
        if not order_id or not slot_id:
            return json_error("order_id e slot_id são obrigatórios", 400)

        client = get_supabase()
        order = get_order(client, order_id)
        if not order or str(order.get('user_id')) != str(request.user_id):
            return json_error("Pedido não encontrado", 404)

        delivery_address = data.get('delivery_address') or order.get('delivery_address')
        if not delivery_address:
            return json_error("Endereço de entrega é obrigatório", 400)

        conn = get_db_connection()
        if not conn:
            return json_error("Falha na conexão com a base de dados.", 503)

        scheduled = schedule_delivery(
            client, conn, request.user_id, order_id, slot_id,
            delivery_address, data.get('special_instructions', ''),
        )
        return json_success(scheduled, 201, message="Entrega agendada com sucesso!")

    except SlotUnavailableError as e:
        return json_error(str(e), 409)
    except Exception as e:
        logger.error(f"Erro ao agendar entrega: {e}", exc_info=True)
        return json_error("Erro ao agendar entrega", 500)
    finally:
        if conn:
            conn.close()


@scheduling_bp.route('/my', methods=['GET'])
@user_token_required
def my_schedules():
    try:
        return json_success(list_scheduled_deliveries(get_supabase(), request.user_id))
    except Exception as e:
        logger.error(f"Erro ao listar agendamentos: {e}", exc_info=True)
        return json_error("Erro ao listar agendamentos", 500)


@scheduling_bp.route('/<delivery_id>', methods=['DELETE'])
@user_token_required
def cancel_schedule(delivery_id):
    conn = None
    try:
        conn = get_db_connection()
        if not conn:
            return json_error("Falha na conexão com a base de dados.", 503)

        # admin cancela qualquer agendamento; os demais só os próprios
        owner = None if request.user_role == 'admin' else request.user_id
        cancelled = cancel_scheduled_delivery(get_supabase(), conn, delivery_id, owner)
        if not cancelled:
            return json_error("Agendamento não encontrado", 404)
        return json_success(cancelled)
    except ScheduleNotCancellableError as e:
        return json_error(str(e), 409)
    except Exception as e:
        logger.error(f"Erro ao cancelar agendamento {delivery_id}: {e}", exc_info=True)
        return json_error("Erro ao cancelar agendamento", 500)
    finally:
        if conn:
            conn.close()


# --------- Administração dos horários ---------
@scheduling_bp.route('/admin/slots', methods=['GET'])
@admin_required
def list_all_slots():
    try:
        query = get_supabase().table(SLOTS_TABLE).select("*")
        if request.args.get('date'):
            query = query.eq('date', request.args['date'])
        rows = query.order('date').order('start_time').execute().data or []
        return json_success(rows)
    except Exception as e:
        logger.error(f"Erro ao listar horários (admin): {e}", exc_info=True)
        return json_error("Erro ao listar horários", 500)


@scheduling_bp.route('/admin/slots', methods=['POST'])
@admin_required
def create_slot():
    try:
        payload = validate_slot_payload(request.get_json(silent=True) or {})
        client = get_supabase()
        slot = first_row(client.table(SLOTS_TABLE).insert(payload).execute())
        log_admin_action(client, request.user_id, "delivery_slot_created",
                         f"Horário {payload['date']} {payload['start_time']}-{payload['end_time']} "
                         f"({payload['max_orders']} pedidos)", request)
        return json_success(slot or payload, 201)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao criar horário: {e}", exc_info=True)
        return json_error("Erro ao criar horário", 500)


@scheduling_bp.route('/admin/slots/<slot_id>', methods=['PUT'])
@admin_required
def update_slot(slot_id):
    try:
        updates = validate_slot_payload(request.get_json(silent=True) or {}, partial=True)
        if not updates:
            return json_error("Nenhum campo válido para atualizar", 400)

        client = get_supabase()
        current = first_row(client.table(SLOTS_TABLE).select("*").eq('id', slot_id).limit(1).execute())
        if not current:
            return json_error("Horário não encontrado", 404)
        if 'max_orders' in updates and updates['max_orders'] < int(current.get('current_orders') or 0):
            return json_error("max_orders não pode ser menor que os pedidos já agendados", 400)
        merged = {**current, **updates}
        if str(merged.get('start_time')) >= str(merged.get('end_time')):
            return json_error("'start_time' deve ser anterior a 'end_time'", 400)

        slot = first_row(client.table(SLOTS_TABLE).update(updates).eq('id', slot_id).execute())
        log_admin_action(client, request.user_id, "delivery_slot_updated", f"Horário {slot_id}: {updates}", request)
        return json_success(slot or merged)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao atualizar horário {slot_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar horário", 500)


@scheduling_bp.route('/admin/slots/<slot_id>', methods=['DELETE'])
@admin_required
def disable_slot(slot_id):
    try:
        client = get_supabase()
        slot = first_row(client.table(SLOTS_TABLE).update({'is_available': False}).eq('id', slot_id).execute())
        if not slot:
            return json_error("Horário não encontrado", 404)
        log_admin_action(client, request.user_id, "delivery_slot_disabled", f"Horário {slot_id} desativado", request)
        return json_success(slot)
    except Exception as e:
        logger.error(f"Erro ao desativar horário {slot_id}: {e}", exc_info=True)
        return json_error("Erro ao desativar horário", 500)
