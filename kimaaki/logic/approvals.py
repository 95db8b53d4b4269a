# kimaaki/logic/approvals.py
"""Aprovação e rejeição de cadastros pelo administrador.

Empresas e entregadores existem em duas tabelas (companies/delivery_drivers e
user_registrations). A tabela específica é a fonte da verdade; a cópia em
user_registrations é sincronizada em best-effort.
"""
import logging

from ..config import PLANS
from ..utils.helpers import first_row, utc_now_iso

logger = logging.getLogger(__name__)

DECISIONS = ("approved", "rejected")


def _decision_payload(status, rejection_reason=None):
    if status not in DECISIONS:
        raise ValueError(f"Status inválido: '{status}'")
    if status == "rejected" and not (rejection_reason or "").strip():
        raise ValueError("Motivo da rejeição é obrigatório")

    payload = {"status": status, "updated_at": utc_now_iso()}
    if status == "rejected":
        payload["rejection_reason"] = rejection_reason.strip()
    return payload


def _mirror_registration(client, filters: dict, payload: dict):
    mirror = {k: v for k, v in payload.items() if k in ("status", "rejection_reason")}
    try:
        query = client.table("user_registrations").update(mirror)
        for column, value in filters.items():
            query = query.eq(column, value)
        query.execute()
    except Exception as e:
        logger.warning(f"⚠️ Falha ao sincronizar user_registrations ({filters}): {e}")


def _grant_role(client, user_id, role):
    """Promove o perfil ligado ao cadastro aprovado. Administradores nunca são rebaixados."""
    (
        client.table("user_profiles")
        .update({"role": role, "status": "approved", "updated_at": utc_now_iso()})
        .eq("id", user_id)
        .neq("role", "admin")
        .execute()
    )
    logger.info(f"Papel '{role}' concedido a {user_id}")


def decide_registration(client, registration_id, status, rejection_reason=None):
    payload = _decision_payload(status, rejection_reason)
    response = client.table("user_registrations").update(payload).eq("id", registration_id).execute()
    return first_row(response)


def decide_company(client, company_id, status, rejection_reason=None):
    payload = _decision_payload(status, rejection_reason)
    company = first_row(client.table("companies").update(payload).eq("id", company_id).execute())
    if not company:
        return None
    _mirror_registration(
        client,
        {"company_name": company.get("company_name"), "nif": company.get("nif")},
        payload,
    )
    if status == "approved" and company.get("user_id"):
        _grant_role(client, company["user_id"], "empresa")
    logger.info(f"Empresa {company_id} -> {status}")
    return company


def decide_driver(client, driver_id, status, rejection_reason=None):
    payload = _decision_payload(status, rejection_reason)
    driver = first_row(client.table("delivery_drivers").update(payload).eq("id", driver_id).execute())
    if not driver:
        return None
    _mirror_registration(
        client,
        {"full_name": driver.get("full_name"), "phone": driver.get("phone"), "role": "entregador"},
        payload,
    )
    if status == "approved" and driver.get("user_id"):
        _grant_role(client, driver["user_id"], "entregador")
    logger.info(f"Entregador {driver_id} -> {status}")
    return driver


def update_company_plan(client, company_id, plan):
    if plan not in PLANS:
        raise ValueError(f"Plano inválido: '{plan}'")
    response = (
        client.table("companies")
        .update({"plan": plan, "updated_at": utc_now_iso()})
        .eq("id", company_id)
        .execute()
    )
    return first_row(response)
