# kimaaki/routes/admin.py
import logging
from datetime import date, timedelta

from flask import Blueprint, request

from ..config import REGISTRATION_STATUSES, ROLES
from ..logic.approvals import decide_company, decide_driver, decide_registration, update_company_plan
from ..logic.statistics import get_admin_statistics, get_commission_report, get_top_companies_by_commission
from ..utils.audit import log_admin_action
from ..utils.decorators import admin_required
from ..utils.helpers import end_of_day, get_supabase, json_error, json_success

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__)

REGISTRATIONS_TABLE = "user_registrations"
COMPANIES_TABLE = "companies"
DRIVERS_TABLE = "delivery_drivers"


def _list_by_status(client, table, status, extra_filters=None):
    query = client.table(table).select("*")
    if status:
        query = query.eq("status", status)
    for column, value in (extra_filters or {}).items():
        query = query.eq(column, value)
    return query.order("created_at", desc=True).execute().data or []


def _status_arg():
    status = request.args.get("status", "pending")
    if status == "all":
        return None, None
    if status not in REGISTRATION_STATUSES:
        return None, json_error(f"Status inválido: '{status}'", 400)
    return status, None


def _decision_body():
    data = request.get_json(silent=True) or {}
    return data.get("status"), data.get("rejection_reason")


# --------- Cadastros ---------
@admin_bp.route("/registrations", methods=["GET"])
@admin_required
def list_registrations():
    try:
        status, error = _status_arg()
        if error:
            return error
        filters = {}
        role = request.args.get("role")
        if role:
            if role not in ROLES:
                return json_error(f"Papel inválido: '{role}'", 400)
            filters["role"] = role
        rows = _list_by_status(get_supabase(), REGISTRATIONS_TABLE, status, filters)
        return json_success(rows, total=len(rows))
    except Exception as e:
        logger.error(f"Erro ao listar cadastros: {e}", exc_info=True)
        return json_error("Erro ao listar cadastros", 500)


@admin_bp.route("/registrations/<registration_id>/status", methods=["PUT"])
@admin_required
def decide_registration_route(registration_id):
    try:
        status, reason = _decision_body()
        client = get_supabase()
        registration = decide_registration(client, registration_id, status, reason)
        if not registration:
            return json_error("Cadastro não encontrado", 404)
        log_admin_action(client, request.user_id, f"registration_{status}",
                         f"Cadastro {registration_id} -> {status}. Motivo: {reason or '-'}", request)
        return json_success(registration)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao decidir cadastro {registration_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar cadastro", 500)


# --------- Empresas ---------
@admin_bp.route("/companies", methods=["GET"])
@admin_required
def list_companies():
    try:
        status, error = _status_arg()
        if error:
            return error
        rows = _list_by_status(get_supabase(), COMPANIES_TABLE, status)
        return json_success(rows, total=len(rows))
    except Exception as e:
        logger.error(f"Erro ao listar empresas: {e}", exc_info=True)
        return json_error("Erro ao listar empresas", 500)


@admin_bp.route("/companies/<company_id>/status", methods=["PUT"])
@admin_required
def decide_company_route(company_id):
    try:
        status, reason = _decision_body()
        client = get_supabase()
        company = decide_company(client, company_id, status, reason)
        if not company:
            return json_error("Empresa não encontrada", 404)
        log_admin_action(client, request.user_id, f"company_{status}",
                         f"Empresa {company.get('company_name')} ({company_id}) -> {status}. Motivo: {reason or '-'}",
                         request)
        return json_success(company)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao decidir empresa {company_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar empresa", 500)


@admin_bp.route("/companies/<company_id>/plan", methods=["PUT"])
@admin_required
def change_company_plan(company_id):
    try:
        plan = (request.get_json(silent=True) or {}).get("plan")
        client = get_supabase()
        company = update_company_plan(client, company_id, plan)
        if not company:
            return json_error("Empresa não encontrada", 404)
        log_admin_action(client, request.user_id, "company_plan_changed",
                         f"Empresa {company_id} -> plano {plan}", request)
        return json_success(company)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao alterar plano da empresa {company_id}: {e}", exc_info=True)
        return json_error("Erro ao alterar plano", 500)


# --------- Entregadores ---------
@admin_bp.route("/drivers", methods=["GET"])
@admin_required
def list_drivers():
    try:
        status, error = _status_arg()
        if error:
            return error
        rows = _list_by_status(get_supabase(), DRIVERS_TABLE, status)
        return json_success(rows, total=len(rows))
    except Exception as e:
        logger.error(f"Erro ao listar entregadores: {e}", exc_info=True)
        return json_error("Erro ao listar entregadores", 500)


@admin_bp.route("/drivers/<driver_id>/status", methods=["PUT"])
@admin_required
def decide_driver_route(driver_id):
    try:
        status, reason = _decision_body()
        client = get_supabase()
        driver = decide_driver(client, driver_id, status, reason)
        if not driver:
            return json_error("Entregador não encontrado", 404)
        log_admin_action(client, request.user_id, f"driver_{status}",
                         f"Entregador {driver.get('full_name')} ({driver_id}) -> {status}. Motivo: {reason or '-'}",
                         request)
        return json_success(driver)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception as e:
        logger.error(f"Erro ao decidir entregador {driver_id}: {e}", exc_info=True)
        return json_error("Erro ao atualizar entregador", 500)


# --------- Estatísticas e relatórios ---------
@admin_bp.route("/statistics", methods=["GET"])
@admin_required
def statistics():
    try:
        return json_success(get_admin_statistics(get_supabase()))
    except Exception as e:
        logger.error(f"Erro ao calcular estatísticas: {e}", exc_info=True)
        return json_error("Erro ao carregar estatísticas", 500)


@admin_bp.route("/reports/commissions", methods=["GET"])
@admin_required
def commission_report():
    try:
        today = date.today()
        start_date = request.args.get("start_date") or (today - timedelta(days=30)).isoformat()
        end_date = request.args.get("end_date") or today.isoformat()
        try:
            if date.fromisoformat(start_date[:10]) > date.fromisoformat(end_date[:10]):
                return json_error("start_date deve ser anterior a end_date", 400)
        except ValueError:
            return json_error("Datas devem estar no formato YYYY-MM-DD", 400)

        report = get_commission_report(get_supabase(), start_date, end_date)
        return json_success(report, start_date=start_date, end_date=end_date)
    except Exception as e:
        logger.error(f"Erro no relatório de comissões: {e}", exc_info=True)
        return json_error("Erro ao gerar relatório de comissões", 500)


@admin_bp.route("/reports/top-companies", methods=["GET"])
@admin_required
def top_companies():
    try:
        limit = request.args.get("limit", 10, type=int)
        if limit < 1:
            return json_error("limit deve ser positivo", 400)
        return json_success(get_top_companies_by_commission(get_supabase(), limit))
    except Exception as e:
        logger.error(f"Erro no ranking de empresas: {e}", exc_info=True)
        return json_error("Erro ao gerar ranking", 500)


# --------- Auditoria ---------
@admin_bp.route("/logs", methods=["GET"])
@admin_required
def list_admin_logs():
    """
    Filtros: search (texto em details), action, admin, start/end (YYYY-MM-DD ou ISO).
    Paginação: page (>= 1), page_size (1..100, padrão 20).
    """
    try:
        try:
            page = max(int(request.args.get("page", "1")), 1)
            page_size = max(min(int(request.args.get("page_size", "20")), 100), 1)
        except ValueError:
            return json_error("Parâmetros de paginação inválidos", 400)

        query = get_supabase().table("admin_logs").select("*", count="exact")
        if request.args.get("search"):
            query = query.ilike("details", f"%{request.args['search']}%")
        if request.args.get("action"):
            query = query.eq("action", request.args["action"])
        if request.args.get("admin"):
            query = query.eq("admin", request.args["admin"])
        if request.args.get("start"):
            query = query.gte("timestamp", request.args["start"])
        if request.args.get("end"):
            end = request.args["end"]
            query = query.lte("timestamp", end_of_day(end))

        start_idx = (page - 1) * page_size
        res = query.order("timestamp", desc=True).range(start_idx, start_idx + page_size - 1).execute()
        items = res.data or []
        total = res.count or 0
        return json_success(
            items, page=page, page_size=page_size, total=total,
            has_next=(start_idx + len(items)) < total,
        )
    except Exception as e:
        logger.error(f"Erro ao listar logs de auditoria: {e}", exc_info=True)
        return json_error("Erro ao listar logs", 500)
