# kimaaki/logic/orders.py
import logging
from decimal import Decimal

from ..config import (
    DEFAULT_COUNTRY, DEFAULT_DELIVERY_FEE, DELIVERY_TYPES, MAX_CART_ITEMS,
    ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUS_TRANSITIONS, PAYMENT_STATUSES,
)
from ..utils.helpers import first_row, serialize_data, to_decimal, utc_now_iso
from ..utils.realtime import publish_to_user
from .commission import calculate_order_commission
from .coupons import CouponError, calculate_discount, find_coupon, redeem_coupon, release_coupon, validate_coupon
from .notifications import send_notification, send_order_status_notification

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"
ORDER_UPDATES_TABLE = "order_updates"
COMPANIES_TABLE = "companies"


class OrderError(ValueError):
    pass


def calculate_subtotal(items) -> Decimal:
    if not items:
        raise OrderError("O pedido precisa de pelo menos um item")
    if len(items) > MAX_CART_ITEMS:
        raise OrderError(f"Máximo de {MAX_CART_ITEMS} itens por pedido")

    subtotal = Decimal(0)
    for item in items:
        try:
            price = to_decimal(item.get("price"))
            quantity = int(item.get("quantity", 1))
        except (TypeError, ValueError, ArithmeticError):
            raise OrderError("Preço ou quantidade inválidos")
        if price < 0 or quantity < 1:
            raise OrderError("Preço ou quantidade inválidos")
        subtotal += price * quantity
    return subtotal


def calculate_total(subtotal, delivery_fee, discount_amount) -> Decimal:
    return to_decimal(subtotal) + to_decimal(delivery_fee) - to_decimal(discount_amount)


def resolve_delivery_fee(company, delivery_type) -> Decimal:
    if delivery_type == "pickup":
        return Decimal(0)
    fee = (company or {}).get("delivery_fee")
    return to_decimal(fee) if fee is not None else Decimal(DEFAULT_DELIVERY_FEE)


def build_order_economics(client, subtotal, delivery_fee, delivery_type, plan, coupon=None,
                          country=DEFAULT_COUNTRY, city=None):
    """Valores do pedido: subtotal, frete, desconto, total e a comissão congelada."""
    subtotal = to_decimal(subtotal)
    delivery_fee = to_decimal(delivery_fee)

    discount, free_shipping = calculate_discount(coupon, subtotal)
    if free_shipping:
        delivery_fee = Decimal(0)

    commission = calculate_order_commission(client, subtotal, delivery_type, plan, country, city)

    return {
        "subtotal": subtotal,
        "delivery_fee": delivery_fee,
        "discount_amount": discount,
        "total": calculate_total(subtotal, delivery_fee, discount),
        "commission_amount": commission.commission,
        "commission_rate": commission.rate,
        "commission_source": commission.source,
    }


def get_company(client, company_id):
    return first_row(client.table(COMPANIES_TABLE).select("*").eq("id", company_id).limit(1).execute())


def process_order_with_commission(client, conn, user_id, order_data, country=DEFAULT_COUNTRY, city=None, now=None):
    """Cria o pedido com frete, desconto e comissão calculados no servidor.

    order_data: restaurant_id, items, delivery_type, delivery_address,
    payment_method, coupon_code (opcional), scheduled_delivery (opcional).
    """
    delivery_type = order_data.get("delivery_type") or "platform_delivery"
    if delivery_type not in DELIVERY_TYPES:
        raise OrderError(f"Tipo de entrega inválido: '{delivery_type}'")

    payment_method = order_data.get("payment_method") or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise OrderError(f"Método de pagamento inválido: '{payment_method}'")

    if delivery_type != "pickup" and not order_data.get("delivery_address"):
        raise OrderError("Endereço de entrega é obrigatório")

    company_id = order_data.get("restaurant_id")
    company = get_company(client, company_id) if company_id else None
    if not company:
        raise OrderError("Empresa não encontrada")
    if company.get("status") != "approved":
        raise OrderError("Empresa ainda não aprovada")

    subtotal = calculate_subtotal(order_data.get("items"))

    coupon = None
    coupon_code = order_data.get("coupon_code")
    if coupon_code:
        coupon = validate_coupon(find_coupon(client, coupon_code), subtotal, now)

    economics = build_order_economics(
        client, subtotal, resolve_delivery_fee(company, delivery_type), delivery_type,
        company.get("plan") or "basic", coupon, country, city,
    )

    if coupon:
        if conn is None:
            raise RuntimeError("Conexão com o banco indisponível para registrar o cupom")
        if not redeem_coupon(conn, coupon["code"]):
            raise CouponError("usage_exhausted", coupon)

    now_iso = utc_now_iso()
    record = {
        "user_id": user_id,
        "restaurant_id": company_id,
        "status": "pending",
        "items": order_data.get("items"),
        "subtotal": economics["subtotal"],
        "delivery_fee": economics["delivery_fee"],
        "discount_amount": economics["discount_amount"],
        "total": economics["total"],
        "delivery_address": order_data.get("delivery_address"),
        "payment_method": payment_method,
        "payment_status": "pending",
        "delivery_type": delivery_type,
        "scheduled_delivery": order_data.get("scheduled_delivery"),
        "coupon_code": coupon["code"] if coupon else None,
        "commission_amount": economics["commission_amount"],
        "commission_rate": economics["commission_rate"],
        "commission_source": economics["commission_source"],
        "created_at": now_iso,
        "updated_at": now_iso,
    }

    try:
        order = first_row(client.table(ORDERS_TABLE).insert(serialize_data(record)).execute())
    except Exception:
        logger.error("Falha ao gravar pedido", exc_info=True)
        if coupon:
            release_coupon(conn, coupon["code"])
        raise

    order = order or record
    logger.info(
        f"🆕 Pedido {order.get('id')} criado: total={economics['total']} "
        f"comissão={economics['commission_amount']} ({economics['commission_rate']}%, {economics['commission_source']})"
    )

    _record_status_update(client, order.get("id"), "pending", "Pedido recebido")
    send_order_status_notification(client, user_id, order.get("id"), "pending", company.get("company_name"))

    return order


def _record_status_update(client, order_id, status, message):
    try:
        client.table(ORDER_UPDATES_TABLE).insert({
            "order_id": order_id,
            "status": status,
            "message": message,
            "timestamp": utc_now_iso(),
        }).execute()
    except Exception as e:
        logger.warning(f"⚠️ Não foi possível gravar histórico do pedido {order_id}: {e}")


def get_order(client, order_id):
    return first_row(client.table(ORDERS_TABLE).select("*").eq("id", order_id).limit(1).execute())


def update_order_status(client, order, new_status, message=None):
    """Atualiza o campo status do pedido. Não há máquina de estados: qualquer
    status conhecido é aceito, e o histórico guarda cada mudança."""
    if new_status not in ORDER_STATUSES:
        raise OrderError(f"Status inválido: '{new_status}'")

    order_id = order["id"]
    response = (
        client.table(ORDERS_TABLE)
        .update({"status": new_status, "updated_at": utc_now_iso()})
        .eq("id", order_id)
        .execute()
    )
    updated = first_row(response) or {**order, "status": new_status}

    _record_status_update(client, order_id, new_status, message or new_status)
    send_order_status_notification(client, order.get("user_id"), order_id, new_status)
    publish_to_user(order.get("user_id"), "order_status", {"order_id": order_id, "status": new_status})

    logger.info(f"Pedido {order_id}: {order.get('status')} -> {new_status}")
    return updated


def get_order_history(client, order_id):
    response = (
        client.table(ORDER_UPDATES_TABLE)
        .select("*")
        .eq("order_id", order_id)
        .order("timestamp")
        .execute()
    )
    return response.data or []


PAYMENT_NOTIFICATIONS = {
    "paid": ("Pagamento Confirmado", "O pagamento do seu pedido foi confirmado."),
    "failed": ("Falha no Pagamento", "Não conseguimos confirmar o pagamento do seu pedido. Tente novamente."),
    "refunded": ("Pagamento Reembolsado", "O valor do seu pedido foi reembolsado."),
}


def update_payment_status(client, order, new_status):
    """Move payment_status seguindo PAYMENT_STATUS_TRANSITIONS.

    A escrita é condicionada ao status lido; retorna None se outra operação
    alterou o pagamento antes.
    """
    if new_status not in PAYMENT_STATUSES:
        raise OrderError(f"Status de pagamento inválido: '{new_status}'")

    current = order.get("payment_status") or "pending"
    if new_status not in PAYMENT_STATUS_TRANSITIONS.get(current, ()):
        raise OrderError(f"Pagamento não pode passar de '{current}' para '{new_status}'")

    order_id = order["id"]
    response = (
        client.table(ORDERS_TABLE)
        .update({"payment_status": new_status, "updated_at": utc_now_iso()})
        .eq("id", order_id)
        .eq("payment_status", current)
        .execute()
    )
    updated = first_row(response)
    if not updated:
        logger.warning(f"⚠️ Pagamento do pedido {order_id} mudou durante a atualização para {new_status}")
        return None

    if new_status in PAYMENT_NOTIFICATIONS:
        title, message = PAYMENT_NOTIFICATIONS[new_status]
        send_notification(client, order.get("user_id"), title, message, "order_update", order_id,
                          {"payment_status": new_status})

    logger.info(f"💳 Pedido {order_id}: pagamento {current} -> {new_status}")
    return updated
