# kimaaki/logic/statistics.py
import logging
from collections import defaultdict
from decimal import Decimal

from ..config import ACTIVE_ORDER_STATUSES
from ..utils.helpers import end_of_day, to_decimal

logger = logging.getLogger(__name__)


def get_admin_statistics(client):
    """Contagens do painel administrativo.

    Se a tabela de pedidos falhar, os números de pedidos ficam zerados e o
    resto do painel continua disponível.
    """
    users = client.table("user_registrations").select("id, status, role").execute().data or []
    companies = client.table("companies").select("id, status").execute().data or []
    drivers = client.table("delivery_drivers").select("id, status").execute().data or []

    try:
        orders = client.table("orders").select("id, status, total, created_at").execute().data or []
    except Exception as e:
        logger.warning(f"⚠️ Pedidos indisponíveis para estatísticas: {e}")
        orders = []

    pending = sum(
        1 for rows in (users, companies, drivers) for r in rows if r.get("status") == "pending"
    )

    return {
        "total_users": len(users),
        "total_companies": len(companies),
        "total_drivers": len(drivers),
        "total_orders": len(orders),
        "pending_approvals": pending,
        "total_revenue": sum(
            (to_decimal(o.get("total")) for o in orders if o.get("status") != "cancelled"), Decimal(0)
        ),
        "active_orders": sum(1 for o in orders if o.get("status") in ACTIVE_ORDER_STATUSES),
        "completed_orders": sum(1 for o in orders if o.get("status") == "delivered"),
    }


def get_commission_report(client, start_date: str, end_date: str):
    """Comissões no período; um end_date só com a data inclui o dia inteiro."""
    response = (
        client.table("orders")
        .select("id, total, commission_amount, commission_rate, delivery_type, created_at, restaurant_id")
        .gte("created_at", start_date)
        .lte("created_at", end_of_day(end_date))
        .not_.is_("commission_amount", "null")
        .order("created_at", desc=True)
        .execute()
    )
    rows = response.data or []

    by_delivery_type = defaultdict(Decimal)
    for row in rows:
        by_delivery_type[row.get("delivery_type") or "unknown"] += to_decimal(row.get("commission_amount"))

    return {
        "orders": rows,
        "total_commission": sum(by_delivery_type.values(), Decimal(0)),
        "total_orders_value": sum((to_decimal(r.get("total")) for r in rows), Decimal(0)),
        "by_delivery_type": dict(by_delivery_type),
    }


def get_top_companies_by_commission(client, limit: int = 10):
    response = (
        client.table("orders")
        .select("restaurant_id, commission_amount")
        .not_.is_("commission_amount", "null")
        .execute()
    )

    totals = defaultdict(Decimal)
    for row in response.data or []:
        totals[row.get("restaurant_id")] += to_decimal(row.get("commission_amount"))

    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [{"restaurant_id": rid, "total_commission": total} for rid, total in ranked]
