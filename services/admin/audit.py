# services/admin/audit.py
import logging
from typing import Any, Optional

from shared.json_utils import safe_json_dumps

logger = logging.getLogger(__name__)


async def log_admin_action(
    db,
    admin_id: str,
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    details: Optional[dict] = None,
) -> None:
    """Record an admin mutation. ``db`` may be the Database or an open connection."""
    await db.execute(
        """
        INSERT INTO admin_action_logs (admin_id, action, target_type, target_id, details)
        VALUES ($1, $2, $3, $4, $5::jsonb)
        """,
        admin_id,
        action,
        target_type,
        str(target_id) if target_id is not None else None,
        safe_json_dumps(details or {}),
    )
    logger.info(f"Admin {admin_id} {action} {target_type or ''} {target_id or ''}".rstrip())
