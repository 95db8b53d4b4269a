# kimaaki/routes/orders.py
import logging
from flask import Blueprint, request

from ..config import DEFAULT_COUNTRY, ORDER_STATUSES
from ..logic.coupons import CouponError
from ..logic.orders import (
    ORDERS_TABLE, OrderError, get_order, get_order_history, process_order_with_commission,
    update_order_status, update_payment_status,
)
from ..utils.decorators import company_required, roles_required, user_token_required
from ..utils.helpers import get_db_connection, get_supabase, json_error, json_success

logger = logging.getLogger(__name__)

orders_bp = Blueprint('orders', __name__)


def _company_ids_for_user(client, user_id):
    rows = client.table('companies').select('id').eq('user_id', user_id).execute().data or []
    return [str(r['id']) for r in rows]


def _can_access(client, order, user_id, role, write=False):
    if role == 'admin':
        return True
    if role == 'empresa':
        return str(order.get('restaurant_id')) in _company_ids_for_user(client, user_id)
    if role == 'entregador':
        return str(order.get('driver_id')) == str(user_id)
    # cliente só lê os próprios pedidos
    return not write and str(order.get('user_id')) == str(user_id)


@orders_bp.route('/', methods=['POST'])
@user_token_required
def create_order():
    logger.info("=== INÍCIO create_order ===")
    conn = None
    try:
        data = request.get_json(silent=True)
        if not data:
            return json_error("Dados do pedido não fornecidos", 400)

        if data.get('coupon_code'):
            conn = get_db_connection()
            if not conn:
                return json_error("Falha na conexão com a base de dados.", 503)

        order = process_order_with_commission(
            get_supabase(), conn, request.user_id, data,
            country=data.get('country') or DEFAULT_COUNTRY,
            city=data.get('city') or None,
        )
        return json_success(order, 201, message="Pedido criado com sucesso!")

    except CouponError as e:
        return json_error(str(e), 400, reason=e.reason)
    except (OrderError, ValueError) as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao criar pedido: {e}", exc_info=True)
        return json_error("Erro ao criar pedido", 500)
    finally:
        if conn:
            conn.close()


@orders_bp.route('/', methods=['GET'])
@user_token_required
def list_orders():
    try:
        client = get_supabase()
        query = client.table(ORDERS_TABLE).select("*")

        role = request.user_role
        if role == 'empresa':
            company_ids = _company_ids_for_user(client, request.user_id)
            if not company_ids:
                return json_success([])
            query = query.in_('restaurant_id', company_ids)
        elif role == 'entregador':
            query = query.eq('driver_id', request.user_id)
        elif role != 'admin':
            query = query.eq('user_id', request.user_id)

        status = request.args.get('status')
        if status:
            if status not in ORDER_STATUSES:
                return json_error(f"Status inválido: '{status}'", 400)
            query = query.eq('status', status)

        orders = query.order('created_at', desc=True).execute().data or []
        return json_success(orders)

    except Exception as e:
        logger.error(f"Erro ao listar pedidos: {e}", exc_info=True)
        return json_error("Erro ao listar pedidos", 500)


@orders_bp.route('/<order_id>', methods=['GET'])
@user_token_required
def get_order_detail(order_id):
    try:
        client = get_supabase()
        order = get_order(client, order_id)
        if not order or not _can_access(client, order, request.user_id, request.user_role):
            return json_error("Pedido não encontrado", 404)
        return json_success(order)
    except Exception as e:
        logger.error(f"Erro ao buscar pedido {order_id}: {e}", exc_info=True)
        return json_error("Erro ao buscar pedido", 500)


@orders_bp.route('/<order_id>/status', methods=['PUT'])
@roles_required('empresa', 'entregador', 'admin')
def change_status(order_id):
    try:
        data = request.get_json(silent=True) or {}
        new_status = data.get('status')
        if not new_status:
            return json_error("O campo 'status' é obrigatório", 400)

        client = get_supabase()
        order = get_order(client, order_id)
        if not order:
            return json_error("Pedido não encontrado", 404)
        if not _can_access(client, order, request.user_id, request.user_role, write=True):
            return json_error("Você não tem permissão para alterar este pedido", 403)

        updated = update_order_status(client, order, new_status, data.get('message'))
        return json_success(updated)

    except OrderError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao atualizar status do pedido {order_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar status do pedido", 500)


@orders_bp.route('/<order_id>/payment', methods=['PUT'])
@company_required
def change_payment_status(order_id):
    """Empresa dona do pedido (ou admin) registra pagamento, falha ou reembolso."""
    try:
        data = request.get_json(silent=True) or {}
        new_status = data.get('payment_status')
        if not new_status:
            return json_error("O campo 'payment_status' é obrigatório", 400)

        client = get_supabase()
        order = get_order(client, order_id)
        if not order:
            return json_error("Pedido não encontrado", 404)
        if not _can_access(client, order, request.user_id, request.user_role, write=True):
            return json_error("Você não tem permissão para alterar este pedido", 403)

        updated = update_payment_status(client, order, new_status)
        if not updated:
            return json_error("O pagamento foi alterado por outra operação, tente novamente", 409)
        return json_success(updated)

    except OrderError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao atualizar pagamento do pedido {order_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar pagamento do pedido", 500)


@orders_bp.route('/<order_id>/history', methods=['GET'])
@user_token_required
def order_history(order_id):
    try:
        client = get_supabase()
        order = get_order(client, order_id)
        if not order or not _can_access(client, order, request.user_id, request.user_role):
            return json_error("Pedido não encontrado", 404)
        return json_success(get_order_history(client, order_id))
    except Exception as e:
        logger.error(f"Erro ao buscar histórico do pedido {order_id}: {e}", exc_info=True)
        return json_error("Erro ao buscar histórico", 500)
