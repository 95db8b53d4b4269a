# kimaaki/routes/notifications.py
import logging
from flask import Blueprint, request

from ..config import NOTIFICATIONS_PAGE_SIZE
from ..logic.notifications import delete_notification, list_notifications, mark_all_as_read, mark_as_read
from ..utils.decorators import user_token_required
from ..utils.helpers import get_supabase, json_error, json_success

logger = logging.getLogger(__name__)

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('/', methods=['GET'])
@user_token_required
def get_notifications():
    try:
        limit = request.args.get('limit', NOTIFICATIONS_PAGE_SIZE, type=int)
        limit = max(1, min(limit, NOTIFICATIONS_PAGE_SIZE))
        items, unread = list_notifications(get_supabase(), request.user_id, limit)
        return json_success(items, unread_count=unread)
    except Exception as e:
        logger.error(f"Erro ao buscar notificações: {e}", exc_info=True)
        return json_error("Erro ao buscar notificações", 500)


@notifications_bp.route('/<notification_id>/read', methods=['PUT'])
@user_token_required
def read_notification(notification_id):
    try:
        notification = mark_as_read(get_supabase(), request.user_id, notification_id)
        if not notification:
            return json_error("Notificação não encontrada", 404)
        return json_success(notification)
    except Exception as e:
        logger.error(f"Erro ao marcar notificação {notification_id}: {e}", exc_info=True)
        return json_error("Erro ao marcar notificação como lida", 500)


@notifications_bp.route('/read-all', methods=['PUT'])
@user_token_required
def read_all():
    try:
        count = mark_all_as_read(get_supabase(), request.user_id)
        return json_success({"updated": count})
    except Exception as e:
        logger.error(f"Erro ao marcar todas as notificações: {e}", exc_info=True)
        return json_error("Erro ao marcar notificações como lidas", 500)


@notifications_bp.route('/<notification_id>', methods=['DELETE'])
@user_token_required
def remove_notification(notification_id):
    try:
        deleted = delete_notification(get_supabase(), request.user_id, notification_id)
        if not deleted:
            return json_error("Notificação não encontrada", 404)
        return json_success(message="Notificação removida")
    except Exception as e:
        logger.error(f"Erro ao remover notificação {notification_id}: {e}", exc_info=True)
        return json_error("Erro ao remover notificação", 500)
