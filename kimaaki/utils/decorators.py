# kimaaki/utils/decorators.py

from functools import wraps
from flask import request, jsonify
from .helpers import get_user_id_from_token


def roles_required(*allowed_roles):
    """
    Decorator que valida o token e, se allowed_roles for informado, exige que o
    papel do usuário (user_profiles.role) esteja entre eles.
    Anexa user_id e user_role à requisição.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Permite requisições OPTIONS (para o CORS funcionar)
            if request.method == 'OPTIONS':
                return jsonify(), 200

            auth_header = request.headers.get('Authorization')
            user_id, user_role, error_response = get_user_id_from_token(auth_header)

            if error_response:
                return error_response

            if allowed_roles and user_role not in allowed_roles:
                return jsonify({"status": "error", "error": "Acesso negado para este tipo de usuário."}), 403

            request.user_id = user_id
            request.user_role = user_role

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def admin_required(f):
    """Apenas administradores."""
    return roles_required('admin')(f)


def company_required(f):
    return roles_required('empresa', 'admin')(f)


def user_token_required(f):
    """
    Decorator genérico que apenas valida o token e anexa as informações do usuário à requisição.
    Útil para rotas que qualquer usuário logado pode acessar.
    """
    return roles_required()(f)
