# kimaaki/routes/auth.py

import logging
from flask import Blueprint, request
from ..utils.helpers import (
    _extract_bearer_token, ensure_user_profile, first_row, get_supabase,
    json_error, json_success, utc_now_iso,
)

auth_bp = Blueprint('auth_bp', __name__)
logger = logging.getLogger(__name__)

PROFILE_EDITABLE_FIELDS = ('full_name', 'phone', 'avatar_url', 'address')


def _current_user(client):
    token = _extract_bearer_token(request.headers.get('Authorization'))
    if not token:
        return None
    user_resp = client.auth.get_user(token)
    return getattr(user_resp, 'user', None)


@auth_bp.route('/me', methods=['GET'])
def get_me():
    """
    Retorna o perfil do usuário logado, criando-o na primeira chamada.
    Quando o Supabase falha o perfil vem só do token e 'degraded' é true.
    """
    try:
        client = get_supabase()
        user = _current_user(client)
        if not user:
            return json_error("Token inválido ou expirado", 401)

        profile, created, degraded = ensure_user_profile(client, user)
        return json_success(profile, created=created, degraded=degraded)

    except Exception as e:
        logger.error(f"Erro ao buscar perfil: {str(e)}", exc_info=True)
        return json_error("Erro ao buscar perfil", 500)


@auth_bp.route('/me', methods=['PUT'])
def update_me():
    try:
        client = get_supabase()
        user = _current_user(client)
        if not user:
            return json_error("Token inválido ou expirado", 401)

        data = request.get_json(silent=True) or {}
        updates = {k: v for k, v in data.items() if k in PROFILE_EDITABLE_FIELDS}
        if not updates:
            return json_error("Nenhum campo válido para atualizar", 400)
        updates['updated_at'] = utc_now_iso()

        profile, _, degraded = ensure_user_profile(client, user)
        if degraded:
            return json_error("Perfil indisponível no momento, tente novamente", 503)

        updated = first_row(
            client.table('user_profiles').update(updates).eq('id', str(user.id)).execute()
        )
        logger.info(f"Perfil {user.id} atualizado: {list(updates)}")
        return json_success(updated or {**profile, **updates})

    except Exception as e:
        logger.error(f"Erro ao atualizar perfil: {str(e)}", exc_info=True)
        return json_error("Erro ao atualizar perfil", 500)
