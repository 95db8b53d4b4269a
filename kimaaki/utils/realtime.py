# kimaaki/utils/realtime.py
"""Canal de tempo real: cada usuário autenticado entra numa sala com o seu id e
recebe ali as notificações e mudanças de status dos pedidos."""
import logging

from flask import request
from flask_socketio import SocketIO, join_room, leave_room

from .helpers import get_user_id_from_token, serialize_data

logger = logging.getLogger(__name__)

socketio = SocketIO()


def publish_to_user(user_id, event: str, payload) -> bool:
    """Envia um evento para a sala do usuário. Best-effort: nunca levanta exceção."""
    if not user_id:
        return False
    try:
        socketio.emit(event, serialize_data(payload), to=str(user_id))
        return True
    except Exception as e:
        logger.warning(f"⚠️ Falha ao publicar '{event}' para {user_id}: {e}")
        return False


@socketio.on('connect')
def handle_connect():
    logger.info(f'Cliente conectado via WebSocket: {request.sid}')
    return True


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.info(f'Cliente desconectado: {request.sid}')


@socketio.on('ping')
def handle_ping(data):
    logger.info(f'Ping recebido de {request.sid}: {data}')
    return {'response': 'pong', 'sid': request.sid}


@socketio.on('subscribe')
def handle_subscribe(data):
    token = (data or {}).get('token')
    user_id, _, error_response = get_user_id_from_token(f"Bearer {token}" if token else None)
    if error_response:
        return {'status': 'error', 'error': 'Token inválido'}
    join_room(user_id)
    logger.info(f'🔔 {request.sid} inscrito na sala {user_id}')
    return {'status': 'subscribed', 'room': user_id}


@socketio.on('unsubscribe')
def handle_unsubscribe(data):
    room = (data or {}).get('room')
    if room:
        leave_room(room)
    return {'status': 'unsubscribed'}
