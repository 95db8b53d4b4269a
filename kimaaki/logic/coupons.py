# kimaaki/logic/coupons.py
import logging
from datetime import datetime, timezone
from decimal import Decimal

import psycopg2.extras

from ..config import COUPON_TYPES
from ..utils.helpers import first_row, to_decimal

logger = logging.getLogger(__name__)

COUPONS_TABLE = "coupons"

# Mensagens exibidas ao cliente para cada motivo de rejeição
REJECTION_MESSAGES = {
    "not_found": "Cupom inválido ou expirado",
    "inactive": "Cupom inválido ou expirado",
    "usage_exhausted": "Este cupom já atingiu o limite de usos",
    "below_min_order_value": "Valor mínimo do pedido não atingido",
    "expired": "Este cupom já expirou",
}


class CouponError(ValueError):
    def __init__(self, reason: str, coupon=None):
        self.reason = reason
        self.coupon = coupon
        message = REJECTION_MESSAGES.get(reason, "Cupom inválido")
        if reason == "below_min_order_value" and coupon and coupon.get("min_order_value"):
            message = f"Valor mínimo do pedido: {to_decimal(coupon['min_order_value']):,.0f} Kz"
        super().__init__(message)


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def _parse_datetime(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def validate_coupon(coupon, subtotal, now=None):
    """Verifica se o cupom pode ser aplicado a um pedido com este subtotal.

    A ordem das verificações segue a da tela de checkout: ativo, limite de usos,
    valor mínimo, validade. Levanta CouponError com o motivo.
    """
    if not coupon:
        raise CouponError("not_found")
    if not coupon.get("is_active"):
        raise CouponError("inactive", coupon)

    max_uses = coupon.get("max_uses")
    if max_uses and int(coupon.get("used_count") or 0) >= int(max_uses):
        raise CouponError("usage_exhausted", coupon)

    min_order_value = coupon.get("min_order_value")
    if min_order_value and to_decimal(subtotal) < to_decimal(min_order_value):
        raise CouponError("below_min_order_value", coupon)

    expires_at = _parse_datetime(coupon.get("expires_at"))
    now = now or datetime.now(timezone.utc)
    if expires_at and expires_at <= now:
        raise CouponError("expired", coupon)

    return coupon


def calculate_discount(coupon, subtotal):
    """Retorna (desconto, isenta_frete). O desconto nunca passa do subtotal."""
    subtotal = max(to_decimal(subtotal), Decimal(0))
    if not coupon:
        return Decimal(0), False

    coupon_type = coupon.get("type")
    value = max(to_decimal(coupon.get("value")), Decimal(0))

    if coupon_type == "percentage":
        return min(subtotal * value / Decimal(100), subtotal), False
    if coupon_type == "fixed":
        return min(value, subtotal), False
    if coupon_type == "free_shipping":
        # o frete é zerado por quem monta o pedido
        return Decimal(0), True
    return Decimal(0), False


def find_coupon(client, code):
    code = normalize_code(code)
    if not code:
        return None
    response = client.table(COUPONS_TABLE).select("*").eq("code", code).limit(1).execute()
    return first_row(response)


def apply_coupon(client, code, subtotal, now=None):
    """Busca, valida e calcula. Retorna dict com coupon, discount e free_shipping."""
    coupon = validate_coupon(find_coupon(client, code), subtotal, now)
    discount, free_shipping = calculate_discount(coupon, subtotal)
    logger.info(f"🎟️ Cupom {coupon['code']} aplicado: desconto={discount} frete_gratis={free_shipping}")
    return {"coupon": coupon, "discount": discount, "free_shipping": free_shipping}


def list_available_coupons(client, now=None):
    now = now or datetime.now(timezone.utc)
    response = (
        client.table(COUPONS_TABLE)
        .select("*")
        .eq("is_active", True)
        .order("created_at", desc=True)
        .execute()
    )
    available = []
    for coupon in response.data or []:
        expires_at = _parse_datetime(coupon.get("expires_at"))
        if expires_at and expires_at <= now:
            continue
        available.append(coupon)
    return available


def describe_coupon(coupon) -> str:
    coupon_type = coupon.get("type")
    if coupon_type == "percentage":
        return f"{to_decimal(coupon.get('value')):g}% de desconto"
    if coupon_type == "fixed":
        return f"{to_decimal(coupon.get('value')):,.0f} Kz de desconto"
    if coupon_type == "free_shipping":
        return "Frete grátis"
    return "Desconto especial"


# --- Uso do cupom (escritas atômicas via Postgres) ---

def redeem_coupon(conn, code):
    """Consome um uso do cupom numa única instrução condicional.

    Retorna a linha atualizada, ou None se o cupom ficou indisponível entre a
    validação e o uso (esgotado, expirado ou desativado).
    """
    with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute("""
            UPDATE coupons
            SET used_count = used_count + 1
            WHERE code = %s
              AND is_active = TRUE
              AND (max_uses IS NULL OR max_uses = 0 OR used_count < max_uses)
              AND (expires_at IS NULL OR expires_at > NOW())
            RETURNING *
        """, (normalize_code(code),))
        row = cur.fetchone()
    conn.commit()
    if not row:
        logger.warning(f"Cupom {normalize_code(code)} indisponível no momento do uso")
        return None
    return dict(row)


def release_coupon(conn, code):
    """Devolve um uso do cupom (pedido não gravado). Nunca fica abaixo de zero."""
    with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute("""
            UPDATE coupons
            SET used_count = GREATEST(used_count - 1, 0)
            WHERE code = %s
            RETURNING *
        """, (normalize_code(code),))
        row = cur.fetchone()
    conn.commit()
    return dict(row) if row else None


# --- Administração ---

def validate_coupon_payload(data: dict, partial: bool = False) -> dict:
    allowed = ("code", "type", "value", "min_order_value", "max_uses", "expires_at", "is_active")
    payload = {k: data[k] for k in allowed if k in data}

    if not partial:
        for field in ("code", "type"):
            if not payload.get(field):
                raise ValueError(f"Campo '{field}' é obrigatório")
        payload.setdefault("is_active", True)
        payload.setdefault("value", 0)
        payload["used_count"] = 0

    if "code" in payload:
        payload["code"] = normalize_code(payload["code"])
        if not payload["code"]:
            raise ValueError("Código do cupom não pode ser vazio")
    if "type" in payload and payload["type"] not in COUPON_TYPES:
        raise ValueError(f"Tipo de cupom inválido: '{payload['type']}'")

    for field in ("value", "min_order_value"):
        if payload.get(field) is not None:
            try:
                amount = to_decimal(payload[field])
            except Exception:
                raise ValueError(f"'{field}' deve ser numérico")
            if amount < 0:
                raise ValueError(f"'{field}' não pode ser negativo")
            payload[field] = float(amount)

    if payload.get("type") == "percentage" and payload.get("value") is not None and payload["value"] > 100:
        raise ValueError("Cupom percentual não pode passar de 100%")

    if payload.get("max_uses") is not None:
        try:
            payload["max_uses"] = int(payload["max_uses"])
        except (TypeError, ValueError):
            raise ValueError("'max_uses' deve ser inteiro")
        if payload["max_uses"] < 0:
            raise ValueError("'max_uses' não pode ser negativo")

    if payload.get("expires_at"):
        try:
            payload["expires_at"] = _parse_datetime(payload["expires_at"]).isoformat()
        except ValueError:
            raise ValueError("'expires_at' deve ser uma data ISO")
    return payload
