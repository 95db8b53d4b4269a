# kimaaki/logic/notifications.py
import logging

from ..config import NOTIFICATION_TYPES, NOTIFICATIONS_PAGE_SIZE
from ..utils.helpers import first_row, utc_now_iso
from ..utils.realtime import publish_to_user

logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = "notifications"

ORDER_STATUS_TEMPLATES = {
    "received": {
        "title": "Pedido Recebido!",
        "message": "Seu pedido foi recebido{by} e está sendo processado.",
        "type": "order_received",
    },
    "preparing": {
        "title": "Preparando seu Pedido",
        "message": "{name} está preparando seu pedido com carinho.",
        "type": "order_update",
    },
    "on_way": {
        "title": "Pedido a Caminho!",
        "message": "Seu pedido saiu para entrega e chegará em breve.",
        "type": "order_update",
    },
    "delivered": {
        "title": "Pedido Entregue!",
        "message": "Seu pedido foi entregue. Bom apetite! Não se esqueça de avaliar.",
        "type": "order_update",
    },
    "cancelled": {
        "title": "Pedido Cancelado",
        "message": "Seu pedido foi cancelado. Entre em contato se precisar de ajuda.",
        "type": "order_update",
    },
}

# status do pedido -> template de notificação
STATUS_TO_TEMPLATE = {
    "pending": "received",
    "confirmed": "received",
    "preparing": "preparing",
    "on_way": "on_way",
    "delivered": "delivered",
    "cancelled": "cancelled",
}


def send_notification(client, user_id, title, message, notification_type="system", order_id=None, data=None):
    """Grava a notificação e empurra para a sala do usuário. Falhas do Supabase só são logadas."""
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Tipo de notificação inválido: '{notification_type}'")
    record = {
        "user_id": user_id,
        "title": title,
        "message": message,
        "type": notification_type,
        "order_id": order_id,
        "read": False,
        "data": data,
        "created_at": utc_now_iso(),
    }
    try:
        created = first_row(client.table(NOTIFICATIONS_TABLE).insert(record).execute()) or record
    except Exception as e:
        logger.error(f"Erro ao enviar notificação para {user_id}: {e}")
        return None

    publish_to_user(user_id, "notification", created)
    return created


def build_order_status_notification(status, restaurant_name=None):
    template_key = STATUS_TO_TEMPLATE.get(status)
    if not template_key:
        return None
    template = ORDER_STATUS_TEMPLATES[template_key]
    message = template["message"].format(
        by=f" pelo {restaurant_name}" if restaurant_name else "",
        name=restaurant_name or "O restaurante",
    )
    return {"title": template["title"], "message": message, "type": template["type"]}


def send_order_status_notification(client, user_id, order_id, status, restaurant_name=None):
    content = build_order_status_notification(status, restaurant_name)
    if not content:
        return None
    return send_notification(
        client, user_id, content["title"], content["message"], content["type"],
        order_id=order_id, data={"status": status},
    )


def list_notifications(client, user_id, limit=NOTIFICATIONS_PAGE_SIZE):
    response = (
        client.table(NOTIFICATIONS_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    items = response.data or []
    unread = sum(1 for n in items if not n.get("read"))
    return items, unread


def mark_as_read(client, user_id, notification_id):
    response = (
        client.table(NOTIFICATIONS_TABLE)
        .update({"read": True})
        .eq("id", notification_id)
        .eq("user_id", user_id)
        .execute()
    )
    return first_row(response)


def mark_all_as_read(client, user_id):
    response = (
        client.table(NOTIFICATIONS_TABLE)
        .update({"read": True})
        .eq("user_id", user_id)
        .eq("read", False)
        .execute()
    )
    return len(response.data or [])


def delete_notification(client, user_id, notification_id):
    response = (
        client.table(NOTIFICATIONS_TABLE)
        .delete()
        .eq("id", notification_id)
        .eq("user_id", user_id)
        .execute()
    )
    return first_row(response)
