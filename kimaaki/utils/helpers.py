# kimaaki/utils/helpers.py

import os
import json
import uuid
import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

import psycopg2
from psycopg2.extras import register_uuid
from flask import current_app, jsonify
from supabase import create_client, Client
from werkzeug.utils import secure_filename

from ..config import BLOCKED_PROFILE_STATUSES

logger = logging.getLogger(__name__)


# --- Supabase ---
def create_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Optional[Client]:
    """Cria o cliente Supabase a partir das variáveis de ambiente.
    Devolve None quando faltam credenciais; o app sobe mesmo assim e o /api/health acusa.
    """
    url = url or os.environ.get("SUPABASE_URL")
    key = key or os.environ.get("SUPABASE_SERVICE_KEY")
    try:
        if not url or not key:
            raise ValueError("SUPABASE_URL e SUPABASE_SERVICE_KEY são obrigatórias.")
        client = create_client(url, key)
        logger.info("✅ Supabase client inicializado.")
        return client
    except Exception as e:
        logger.error(f"❌ Falha ao inicializar Supabase: {e}")
        return None


def get_supabase() -> Client:
    client = current_app.extensions.get("supabase")
    if client is None:
        raise RuntimeError("Supabase client não inicializado.")
    return client


# --- DB ---
def connect_database(url: Optional[str] = None):
    url = url or os.environ.get("DATABASE_URL")
    if not url:
        logger.error("❌ DATABASE_URL não encontrada.")
        return None
    conn = psycopg2.connect(url)
    register_uuid(None, conn)
    return conn


def get_db_connection():
    """Conexão direta ao Postgres, usada apenas para escritas atômicas (contadores)."""
    factory = current_app.extensions.get("db_factory") or connect_database
    try:
        return factory()
    except Exception as e:
        logger.error(f"❌ Conexão DB falhou: {e}", exc_info=True)
        return None


# --- Leitura de respostas do PostgREST ---
def first_row(response):
    data = getattr(response, "data", None)
    if not data:
        return None
    return data[0] if isinstance(data, list) else data


def to_decimal(value, default="0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Valor numérico inválido: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Valor numérico inválido: {value!r}")
    return result


def round_money(value) -> int:
    """Arredonda para o inteiro mais próximo (meio para cima), sem regras por moeda."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def end_of_day(value: str) -> str:
    """'YYYY-MM-DD' vira o último instante do dia; timestamps completos passam intactos."""
    return f"{value}T23:59:59.999999" if len(value) == 10 else value


# --- Auth helper ---
def _extract_bearer_token(auth_header: str):
    """Extrai o token de um cabeçalho Authorization.
    Aceita:
      - 'Bearer <jwt>'
      - '<jwt>' (sem 'Bearer', comum quando o front erra)
    """
    if not auth_header:
        return None
    parts = auth_header.strip().split()
    if len(parts) == 0:
        return None
    if parts[0].lower() == "bearer" and len(parts) >= 2:
        return parts[1]
    return parts[0]


def ensure_user_profile(client, user):
    """Busca o perfil em user_profiles e cria um perfil de cliente se não existir.

    Retorna (profile, created, degraded). Em caso de falha no Supabase o perfil
    é montado só com os dados do token e degraded=True: o chamador consegue
    distinguir esse modo do perfil real.

    Todo perfil novo nasce como cliente. O user_metadata é editável pelo próprio
    usuário e nunca define o papel; empresa/entregador são concedidos na
    aprovação do cadastro (logic/approvals.py).
    """
    metadata = getattr(user, "user_metadata", None) or {}
    fallback = {
        "id": str(user.id),
        "email": getattr(user, "email", "") or "",
        "full_name": metadata.get("full_name") or metadata.get("name") or "Usuário",
        "role": "cliente",
    }
    try:
        existing = first_row(
            client.table("user_profiles").select("*").eq("id", str(user.id)).limit(1).execute()
        )
        if existing:
            return existing, False, False

        new_profile = {
            **fallback,
            "phone": metadata.get("phone", ""),
            "avatar_url": metadata.get("avatar_url") or metadata.get("picture"),
            "status": "approved",
            "created_at": utc_now_iso(),
        }
        created = first_row(client.table("user_profiles").insert(new_profile).execute())
        logger.info(f"🆕 Perfil criado automaticamente para {user.id}")
        return created or new_profile, True, False
    except Exception as e:
        logger.warning(f"⚠️ Falha ao criar/buscar perfil de {user.id}, usando dados do token: {e}")
        return fallback, False, True


def get_user_id_from_token(auth_header):
    """
    Retorna (user_id:str, role:str|None, error_response|None)
    - Em caso de erro de autorização, o terceiro item é um tuple (json_response, status_code)
    """
    token = _extract_bearer_token(auth_header)
    if not token:
        return None, None, (jsonify({"status": "error", "error": "Authorization ausente ou inválido"}), 401)

    try:
        client = get_supabase()
        user_resp = client.auth.get_user(token)
        user = getattr(user_resp, "user", None)
        if not user:
            return None, None, (jsonify({"status": "error", "error": "Token inválido ou expirado"}), 401)

        profile, _, _ = ensure_user_profile(client, user)
        role = profile.get("role")
        if not role:
            return None, None, (jsonify({"status": "error", "error": "Permissão não encontrada para este usuário"}), 403)
        if profile.get("status") in BLOCKED_PROFILE_STATUSES:
            return None, None, (jsonify({"status": "error", "error": "Conta bloqueada ou aguardando aprovação"}), 403)

        return str(user.id), role, None

    except Exception as e:
        msg = str(e)
        logger.error(f"Erro ao processar token: {msg}", exc_info=True)
        if "invalid" in msg.lower() or "jwt" in msg.lower() or "token" in msg.lower():
            return None, None, (jsonify({"status": "error", "error": f"Erro de autenticação: {msg}"}), 401)
        return None, None, (jsonify({"status": "error", "error": "Erro interno ao validar token"}), 500)


# --- Storage ---
def allowed_document(filename: str, allowed_extensions) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in allowed_extensions


def upload_public_file(client, bucket: str, folder: str, file_storage) -> str:
    """Envia um arquivo (werkzeug FileStorage) para o bucket e devolve a URL pública."""
    original = secure_filename(file_storage.filename or "")
    ext = original.rsplit(".", 1)[1].lower() if "." in original else "bin"
    path = f"{folder}/{int(datetime.now().timestamp())}-{uuid.uuid4().hex}.{ext}"

    client.storage.from_(bucket).upload(
        path=path,
        file=file_storage.read(),
        file_options={"content-type": file_storage.mimetype or "application/octet-stream"},
    )
    public_url = client.storage.from_(bucket).get_public_url(path)
    logger.info(f"Upload realizado: {bucket}/{path}")
    return public_url


# --- JSON utils ---
class CustomJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        if isinstance(obj, uuid.UUID):
            return str(obj)
        return super().default(obj)


def serialize_data(data):
    return json.loads(json.dumps(data, cls=CustomJSONEncoder))


def json_success(data=None, status_code=200, **extra):
    body = {"status": "success"}
    if data is not None:
        body["data"] = serialize_data(data)
    body.update(serialize_data(extra))
    return jsonify(body), status_code


def json_error(message, status_code=400, **extra):
    body = {"status": "error", "error": message}
    body.update(serialize_data(extra))
    return jsonify(body), status_code
