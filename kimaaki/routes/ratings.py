# kimaaki/routes/ratings.py
import logging
from decimal import Decimal, ROUND_HALF_UP

import psycopg2.extras
from flask import Blueprint, request

from ..config import RATING_TARGET_TYPES
from ..utils.decorators import user_token_required
from ..utils.helpers import first_row, get_db_connection, get_supabase, json_error, json_success, utc_now_iso

logger = logging.getLogger(__name__)

ratings_bp = Blueprint('ratings', __name__)

RATINGS_TABLE = "ratings"


def average_rating(values):
    """Média com uma casa decimal (meio para cima); 0 quando não há avaliações."""
    values = [Decimal(int(v)) for v in values]
    if not values:
        return 0.0
    avg = sum(values) / len(values)
    return float(avg.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _parse_rating(value):
    try:
        rating = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != rating:
        return None
    return rating if 1 <= rating <= 5 else None


@ratings_bp.route('/<target_type>/<target_id>', methods=['POST'])
@user_token_required
def create_rating(target_type, target_id):
    try:
        if target_type not in RATING_TARGET_TYPES:
            return json_error(f"Tipo de avaliação inválido: '{target_type}'", 400)

        data = request.get_json(silent=True) or {}
        rating = _parse_rating(data.get('rating'))
        if rating is None:
            return json_error("A nota deve ser um inteiro entre 1 e 5", 400)

        client = get_supabase()
        order_id = data.get('order_id')
        if order_id:
            # uma avaliação por pedido e alvo
            duplicate = first_row(
                client.table(RATINGS_TABLE).select('id')
                .eq('user_id', request.user_id)
                .eq('target_id', target_id)
                .eq('order_id', order_id)
                .limit(1)
                .execute()
            )
            if duplicate:
                return json_error("Você já avaliou esse pedido.", 409)

        profile = first_row(
            client.table('user_profiles').select('full_name').eq('id', request.user_id).limit(1).execute()
        ) or {}

        record = {
            "user_id": request.user_id,
            "user_name": profile.get('full_name') or "Cliente",
            "target_id": target_id,
            "target_type": target_type,
            "order_id": order_id,
            "rating": rating,
            "comment": (data.get('comment') or '').strip(),
            "helpful_count": 0,
            "created_at": utc_now_iso(),
        }
        created = first_row(client.table(RATINGS_TABLE).insert(record).execute())
        logger.info(f"⭐ Avaliação {rating} para {target_type} {target_id} por {request.user_id}")
        return json_success(created or record, 201, message="Avaliação registrada com sucesso!")

    except Exception as e:
        logger.error(f"Erro ao registrar avaliação: {e}", exc_info=True)
        return json_error("Erro ao registrar avaliação", 500)


@ratings_bp.route('/<target_type>/<target_id>', methods=['GET'])
def list_ratings(target_type, target_id):
    try:
        if target_type not in RATING_TARGET_TYPES:
            return json_error(f"Tipo de avaliação inválido: '{target_type}'", 400)

        rows = (
            get_supabase().table(RATINGS_TABLE)
            .select('*')
            .eq('target_type', target_type)
            .eq('target_id', target_id)
            .order('created_at', desc=True)
            .execute()
            .data or []
        )
        return json_success(
            rows,
            average_rating=average_rating(r.get('rating') for r in rows),
            total_reviews=len(rows),
        )
    except Exception as e:
        logger.error(f"Erro ao listar avaliações: {e}", exc_info=True)
        return json_error("Erro ao listar avaliações", 500)


@ratings_bp.route('/reviews/<rating_id>/helpful', methods=['POST'])
@user_token_required
def mark_helpful(rating_id):
    conn = get_db_connection()
    if not conn:
        return json_error("Falha na conexão com a base de dados.", 503)
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
            cur.execute(
                "UPDATE ratings SET helpful_count = COALESCE(helpful_count, 0) + 1 WHERE id = %s RETURNING *",
                (rating_id,),
            )
            row = cur.fetchone()
        conn.commit()
        if not row:
            return json_error("Avaliação não encontrada", 404)
        return json_success(dict(row))
    except Exception as e:
        logger.error(f"Erro ao marcar avaliação {rating_id} como útil: {e}", exc_info=True)
        return json_error("Erro ao marcar avaliação como útil", 500)
    finally:
        conn.close()
