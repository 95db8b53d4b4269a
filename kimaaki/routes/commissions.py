# kimaaki/routes/commissions.py
import logging
from flask import Blueprint, request

from ..config import COUNTRIES, DEFAULT_COUNTRY, PLAN_DETAILS
from ..logic.commission import (
    COMMISSION_CONFIGS_TABLE, calculate_order_commission, has_active_duplicate,
    validate_config_payload,
)
from ..utils.audit import log_admin_action
from ..utils.decorators import admin_required, user_token_required
from ..utils.helpers import first_row, get_supabase, json_error, json_success, to_decimal, utc_now_iso

logger = logging.getLogger(__name__)

commissions_bp = Blueprint('commissions', __name__)


@commissions_bp.route('/plans', methods=['GET'])
def list_plans():
    return json_success([{"id": plan_id, **details} for plan_id, details in PLAN_DETAILS.items()])


@commissions_bp.route('/countries', methods=['GET'])
def list_countries():
    return json_success(COUNTRIES, default=DEFAULT_COUNTRY)


@commissions_bp.route('/calculate', methods=['POST'])
@user_token_required
def preview_commission():
    """Simula a comissão de um pedido sem gravar nada."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            subtotal = to_decimal(data.get('subtotal'))
        except (ArithmeticError, ValueError):
            return json_error("subtotal deve ser numérico", 400)
        if subtotal < 0:
            return json_error("subtotal não pode ser negativo", 400)

        result = calculate_order_commission(
            get_supabase(), subtotal,
            data.get('delivery_type', 'platform_delivery'),
            data.get('plan', 'basic'),
            data.get('country') or DEFAULT_COUNTRY,
            data.get('city') or None,
        )
        return json_success({**result.to_dict(), "subtotal": subtotal, "degraded": result.degraded})

    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao simular comissão: {e}", exc_info=True)
        return json_error("Erro ao calcular comissão", 500)


# --------- Administração das configurações ---------
@commissions_bp.route('/configs', methods=['GET'])
@admin_required
def list_configs():
    try:
        query = get_supabase().table(COMMISSION_CONFIGS_TABLE).select("*")
        country = request.args.get('country')
        if country:
            query = query.eq('country', country)
        if request.args.get('active') == 'true':
            query = query.eq('is_active', True)
        rows = query.order('created_at', desc=True).execute().data or []
        return json_success(rows)
    except Exception as e:
        logger.error(f"Erro ao listar configurações de comissão: {e}", exc_info=True)
        return json_error("Erro ao listar configurações", 500)


@commissions_bp.route('/configs', methods=['POST'])
@admin_required
def create_config():
    try:
        payload = validate_config_payload(request.get_json(silent=True) or {})
        client = get_supabase()
        if payload.get('is_active') and has_active_duplicate(client, payload):
            return json_error("Já existe uma configuração ativa para este país/cidade/plano/entrega", 409)

        payload['created_at'] = utc_now_iso()
        config = first_row(client.table(COMMISSION_CONFIGS_TABLE).insert(payload).execute())
        log_admin_action(client, request.user_id, "commission_config_created",
                         f"{payload['country']}/{payload.get('city') or '*'} {payload['plan_type']} "
                         f"{payload['delivery_type']} = {payload['commission_percentage']}%", request)
        return json_success(config or payload, 201)

    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao criar configuração de comissão: {e}", exc_info=True)
        return json_error("Erro ao criar configuração", 500)


@commissions_bp.route('/configs/<config_id>', methods=['PUT'])
@admin_required
def update_config(config_id):
    try:
        updates = validate_config_payload(request.get_json(silent=True) or {}, partial=True)
        if not updates:
            return json_error("Nenhum campo válido para atualizar", 400)

        client = get_supabase()
        current = first_row(
            client.table(COMMISSION_CONFIGS_TABLE).select("*").eq('id', config_id).limit(1).execute()
        )
        if not current:
            return json_error("Configuração não encontrada", 404)

        merged = {**current, **updates}
        if merged.get('is_active') and has_active_duplicate(client, merged, exclude_id=config_id):
            return json_error("Já existe uma configuração ativa para este país/cidade/plano/entrega", 409)

        updates['updated_at'] = utc_now_iso()
        config = first_row(
            client.table(COMMISSION_CONFIGS_TABLE).update(updates).eq('id', config_id).execute()
        )
        log_admin_action(client, request.user_id, "commission_config_updated",
                         f"Configuração {config_id}: {updates}", request)
        return json_success(config or {**merged, **updates})

    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao atualizar configuração {config_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar configuração", 500)


@commissions_bp.route('/configs/<config_id>', methods=['DELETE'])
@admin_required
def deactivate_config(config_id):
    try:
        client = get_supabase()
        config = first_row(
            client.table(COMMISSION_CONFIGS_TABLE)
            .update({'is_active': False, 'updated_at': utc_now_iso()})
            .eq('id', config_id)
            .execute()
        )
        if not config:
            return json_error("Configuração não encontrada", 404)
        log_admin_action(client, request.user_id, "commission_config_deactivated",
                         f"Configuração {config_id} desativada", request)
        return json_success(config)
    except Exception as e:
        logger.error(f"Erro ao desativar configuração {config_id}: {e}", exc_info=True)
        return json_error("Erro ao desativar configuração", 500)
