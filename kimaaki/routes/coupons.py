# kimaaki/routes/coupons.py
import logging
from flask import Blueprint, request

from ..logic.coupons import (
    COUPONS_TABLE, CouponError, apply_coupon, describe_coupon, find_coupon,
    list_available_coupons, validate_coupon_payload,
)
from ..utils.audit import log_admin_action
from ..utils.decorators import admin_required, user_token_required
from ..utils.helpers import first_row, get_supabase, json_error, json_success, to_decimal, utc_now_iso

logger = logging.getLogger(__name__)

coupons_bp = Blueprint('coupons', __name__)


@coupons_bp.route('/', methods=['GET'])
def available_coupons():
    try:
        coupons = list_available_coupons(get_supabase())
        return json_success([{**c, "description": describe_coupon(c)} for c in coupons])
    except Exception as e:
        logger.error(f"Erro ao listar cupons: {e}", exc_info=True)
        return json_error("Erro ao listar cupons", 500)


@coupons_bp.route('/apply', methods=['POST'])
@user_token_required
def apply():
    """Valida um código para o subtotal do carrinho e devolve o desconto.
    Não consome o cupom: o uso é registrado só na criação do pedido."""
    try:
        data = request.get_json(silent=True) or {}
        code = data.get('code')
        if not code:
            return json_error("Código do cupom é obrigatório", 400)
        try:
            subtotal = to_decimal(data.get('subtotal'))
        except (ArithmeticError, ValueError):
            return json_error("subtotal deve ser numérico", 400)

        result = apply_coupon(get_supabase(), code, subtotal)
        coupon = result['coupon']
        return json_success({
            "code": coupon['code'],
            "type": coupon.get('type'),
            "description": describe_coupon(coupon),
            "discount": result['discount'],
            "free_shipping": result['free_shipping'],
        })

    except CouponError as e:
        return json_error(str(e), 400, reason=e.reason)
    except Exception as e:
        logger.error(f"Erro ao aplicar cupom: {e}", exc_info=True)
        return json_error("Erro ao validar cupom", 500)


# --------- Administração ---------
@coupons_bp.route('/admin', methods=['GET'])
@admin_required
def list_all_coupons():
    try:
        rows = get_supabase().table(COUPONS_TABLE).select("*").order('created_at', desc=True).execute().data or []
        return json_success(rows)
    except Exception as e:
        logger.error(f"Erro ao listar cupons (admin): {e}", exc_info=True)
        return json_error("Erro ao listar cupons", 500)


@coupons_bp.route('/admin', methods=['POST'])
@admin_required
def create_coupon():
    try:
        payload = validate_coupon_payload(request.get_json(silent=True) or {})
        client = get_supabase()
        if find_coupon(client, payload['code']):
            return json_error(f"Já existe um cupom com o código {payload['code']}", 409)

        payload['created_at'] = utc_now_iso()
        coupon = first_row(client.table(COUPONS_TABLE).insert(payload).execute())
        log_admin_action(client, request.user_id, "coupon_created",
                         f"Cupom {payload['code']} ({payload['type']}, {payload.get('value')})", request)
        return json_success(coupon or payload, 201)

    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao criar cupom: {e}", exc_info=True)
        return json_error("Erro ao criar cupom", 500)


@coupons_bp.route('/admin/<coupon_id>', methods=['PUT'])
@admin_required
def update_coupon(coupon_id):
    try:
        updates = validate_coupon_payload(request.get_json(silent=True) or {}, partial=True)
        # used_count só muda pelo uso do cupom
        updates.pop('used_count', None)
        if not updates:
            return json_error("Nenhum campo válido para atualizar", 400)

        client = get_supabase()
        if 'code' in updates:
            other = find_coupon(client, updates['code'])
            if other and str(other.get('id')) != str(coupon_id):
                return json_error(f"Já existe um cupom com o código {updates['code']}", 409)

        coupon = first_row(client.table(COUPONS_TABLE).update(updates).eq('id', coupon_id).execute())
        if not coupon:
            return json_error("Cupom não encontrado", 404)
        log_admin_action(client, request.user_id, "coupon_updated", f"Cupom {coupon_id}: {updates}", request)
        return json_success(coupon)

    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao atualizar cupom {coupon_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar cupom", 500)


@coupons_bp.route('/admin/<coupon_id>', methods=['DELETE'])
@admin_required
def deactivate_coupon(coupon_id):
    try:
        client = get_supabase()
        coupon = first_row(
            client.table(COUPONS_TABLE).update({'is_active': False}).eq('id', coupon_id).execute()
        )
        if not coupon:
            return json_error("Cupom não encontrado", 404)
        log_admin_action(client, request.user_id, "coupon_deactivated", f"Cupom {coupon.get('code')} desativado", request)
        return json_success(coupon)
    except Exception as e:
        logger.error(f"Erro ao desativar cupom {coupon_id}: {e}", exc_info=True)
        return json_error("Erro ao desativar cupom", 500)
