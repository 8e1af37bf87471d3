"""Audit event logging service."""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


async def log_event(
    store,
    tenant_id: str,
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record a lifecycle event in the audit log.

    Audit writes never fail the operation they describe; a failed write is
    logged and dropped.

    Args:
        store: TenantStore (anything with ``record_audit``)
        tenant_id: Tenant ID
        action: Event name (e.g. 'provisioned', 'provision_failed', 'terminated')
        details: Additional JSON-serializable payload
    """
    try:
        store.record_audit(tenant_id, action, details)
    except Exception as e:
        logger.warning(
            f"Failed to record audit event: {e}",
            extra={"tenant_id": tenant_id, "action": action},
        )
