# kimaaki/logic/commission.py
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional

from ..config import DEFAULT_COUNTRY, DELIVERY_TYPES, PLAN_COMMISSIONS, PLANS
from ..utils.helpers import round_money, to_decimal

logger = logging.getLogger(__name__)

COMMISSION_CONFIGS_TABLE = "commission_configs"

# Origem da taxa usada no cálculo
SOURCE_OVERRIDE = "override"
SOURCE_PLAN_DEFAULT = "plan_default"
SOURCE_DEGRADED = "degraded"


@dataclass(frozen=True)
class CommissionResult:
    commission: int
    rate: Decimal
    source: str
    config_id: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.source == SOURCE_DEGRADED

    def to_dict(self):
        return asdict(self)


def _check_plan_and_delivery_type(plan: str, delivery_type: str):
    if plan not in PLANS:
        raise ValueError(f"Plano inválido: '{plan}'")
    if delivery_type not in DELIVERY_TYPES:
        raise ValueError(f"Tipo de entrega inválido: '{delivery_type}'")


def default_rate(plan: str, delivery_type: str) -> Decimal:
    _check_plan_and_delivery_type(plan, delivery_type)
    return Decimal(PLAN_COMMISSIONS[plan][delivery_type])


def commission_amount(subtotal, rate) -> int:
    return round_money(to_decimal(subtotal) * to_decimal(rate) / Decimal(100))


def pick_config(rows, city: Optional[str] = None):
    """Escolhe a configuração aplicável entre as linhas ativas do mesmo (país, plano, entrega).

    Com cidade: a linha da cidade vence a linha do país (city nulo).
    Sem cidade: só a linha do país vale.
    Mais de uma linha para a mesma chave é violação de integridade; usa a mais recente.
    """
    if city:
        candidates = [r for r in rows if r.get("city") == city]
        if not candidates:
            candidates = [r for r in rows if not r.get("city")]
    else:
        candidates = [r for r in rows if not r.get("city")]

    if not candidates:
        return None
    if len(candidates) > 1:
        logger.warning(
            f"⚠️ {len(candidates)} configurações ativas para a mesma chave "
            f"(cidade={city!r}); usando a mais recente"
        )
        candidates = sorted(candidates, key=lambda r: r.get("created_at") or "", reverse=True)
    return candidates[0]


def find_commission_config(client, country: str, plan: str, delivery_type: str, city: Optional[str] = None):
    response = (
        client.table(COMMISSION_CONFIGS_TABLE)
        .select("*")
        .eq("country", country)
        .eq("plan_type", plan)
        .eq("delivery_type", delivery_type)
        .eq("is_active", True)
        .execute()
    )
    return pick_config(response.data or [], city)


def calculate_order_commission(client, subtotal, delivery_type: str, plan: str,
                               country: str = DEFAULT_COUNTRY, city: Optional[str] = None) -> CommissionResult:
    """Resolve a taxa (override por localização ou padrão do plano) e calcula a comissão.

    Falha ao consultar commission_configs não interrompe o pedido: cai na taxa
    padrão do plano com source='degraded'.
    """
    fallback_rate = default_rate(plan, delivery_type)

    try:
        config = find_commission_config(client, country or DEFAULT_COUNTRY, plan, delivery_type, city)
    except Exception as e:
        logger.error(f"Erro ao buscar configuração de comissão, usando padrão do plano: {e}")
        return CommissionResult(commission_amount(subtotal, fallback_rate), fallback_rate, SOURCE_DEGRADED)

    if config:
        rate = to_decimal(config.get("commission_percentage"))
        return CommissionResult(commission_amount(subtotal, rate), rate, SOURCE_OVERRIDE, config.get("id"))

    return CommissionResult(commission_amount(subtotal, fallback_rate), fallback_rate, SOURCE_PLAN_DEFAULT)


# --- Administração das configurações ---

def validate_config_payload(data: dict, partial: bool = False) -> dict:
    """Normaliza o corpo de criação/edição de commission_configs. Levanta ValueError."""
    allowed = ("country", "city", "plan_type", "delivery_type", "commission_percentage", "is_active")
    payload = {k: data[k] for k in allowed if k in data}

    if not partial:
        for field in ("country", "plan_type", "delivery_type", "commission_percentage"):
            if payload.get(field) in (None, ""):
                raise ValueError(f"Campo '{field}' é obrigatório")
        payload.setdefault("is_active", True)

    if "plan_type" in payload and payload["plan_type"] not in PLANS:
        raise ValueError(f"Plano inválido: '{payload['plan_type']}'")
    if "delivery_type" in payload and payload["delivery_type"] not in DELIVERY_TYPES:
        raise ValueError(f"Tipo de entrega inválido: '{payload['delivery_type']}'")
    if "commission_percentage" in payload:
        try:
            pct = to_decimal(payload["commission_percentage"])
        except Exception:
            raise ValueError("commission_percentage deve ser numérico")
        if pct < 0 or pct > 100:
            raise ValueError("commission_percentage deve estar entre 0 e 100")
        payload["commission_percentage"] = float(pct)
    if "city" in payload and not payload["city"]:
        payload["city"] = None
    return payload


def has_active_duplicate(client, config: dict, exclude_id=None) -> bool:
    """Garante no máximo uma linha ativa por (país, cidade, plano, entrega)."""
    query = (
        client.table(COMMISSION_CONFIGS_TABLE)
        .select("id, city")
        .eq("country", config["country"])
        .eq("plan_type", config["plan_type"])
        .eq("delivery_type", config["delivery_type"])
        .eq("is_active", True)
    )
    rows = query.execute().data or []
    city = config.get("city") or None
    for row in rows:
        if exclude_id is not None and str(row.get("id")) == str(exclude_id):
            continue
        if (row.get("city") or None) == city:
            return True
    return False
