"""
Admin action auditing helper module.
Provides best-effort logging of admin actions to the admin_logs table.

Usage:
    from kimaaki.utils.audit import log_admin_action

    log_admin_action(client, request.user_id, "ApproveCompany", "Approved company 42", request)

Features:
    - Best-effort: never raises, so an audit failure cannot break an approval
    - IP and User-Agent enrichment when the request object is provided
    - Input validation and truncation for safe database storage

Instrumented routes:
    - Registration approvals/rejections (/api/admin/registrations/...)
    - Company and courier approvals/rejections, plan changes
    - Commission config create/update/deactivate
    - Coupon and delivery slot administration
"""
import logging
from typing import Optional
from datetime import datetime, timezone
from flask import Request

logger = logging.getLogger(__name__)

MAX_DETAILS_LENGTH = 16 * 1024


def log_admin_action(client, admin: str, action: str, details: str, request: Optional[Request] = None) -> None:
    """
    Best-effort logging of admin actions to the admin_logs table.

    Args:
        client: Supabase client
        admin: Admin id/email
        action: Short action verb (e.g., "ApproveCompany", "CreateCoupon")
        details: Concise summary of the action
        request: Optional Flask request object for IP/UA enrichment
    """
    try:
        if not client:
            logger.warning("Audit logging skipped: Supabase client not available")
            return

        if not admin or not str(admin).strip():
            logger.warning("Audit logging skipped: Empty admin identifier")
            return

        if not action or not action.strip():
            logger.warning("Audit logging skipped: Empty action")
            return

        if not details or not details.strip():
            logger.warning("Audit logging skipped: Empty details")
            return

        admin = str(admin).strip()[:255]
        action = action.strip()[:100]
        details = details.strip()

        if request is not None:
            try:
                ip_address = request.remote_addr or request.environ.get('REMOTE_ADDR', 'unknown')
                user_agent = request.headers.get('User-Agent', 'unknown')
                details += f" | ip={ip_address} ua={user_agent[:100]}"
            except Exception as e:
                logger.warning(f"Failed to enrich audit details with request info: {e}")

        if len(details) > MAX_DETAILS_LENGTH:
            details = details[:MAX_DETAILS_LENGTH - 3] + "..."

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "admin": admin,
            "action": action,
            "details": details
        }

        result = client.table("admin_logs").insert(log_entry).execute()

        if result.data:
            logger.info(f"Admin action logged: {action} by {admin}")
        else:
            logger.warning(f"Failed to log admin action: {action} by {admin} - no data returned")

    except Exception as e:
        logger.warning(f"Failed to log admin action ({action} by {admin}): {e}")
