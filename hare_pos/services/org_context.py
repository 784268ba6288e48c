"""
Organization Context: resolve which organization the signed-in user works for.

The resulting OrgContext is created once per sign-in and handed explicitly to
every component that needs organization scope.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import logging

from hare_pos.services.supabase_client import SupabaseClient, eq
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import AuthenticationError, OrgResolutionError

logger = logging.getLogger(__name__)


@dataclass
class OrgContext:
    user_id: str
    org_id: str
    access_token: str
    client: SupabaseClient
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def lookup_employee_org(client: SupabaseClient, user_id: str) -> Optional[str]:
    """Bound organization from the employee directory, or None."""
    row = await client.select_one(
        settings.EMPLOYEES_TABLE,
        columns="org_id",
        filters={"user_id": eq(user_id)},
    )
    return row.get("org_id") if row else None


async def resolve_org_context(access_token: str, client: Optional[SupabaseClient] = None) -> OrgContext:
    """
    Build the organization context for an access token.

    Lookup order: employee directory, then ``user_metadata.org_id``/``orgId``,
    then the configured DEFAULT_ORG_ID.

    Raises:
        AuthenticationError: no active session for the token
        OrgResolutionError: the user has no bound organization
    """
    client = client or SupabaseClient(access_token=access_token)

    user = await client.get_user()
    if not user:
        raise AuthenticationError("Not authenticated")
    user_id = user["id"]

    org_id = await lookup_employee_org(client, user_id)
    if not org_id:
        meta = user.get("user_metadata") or {}
        org_id = meta.get("org_id") or meta.get("orgId") or settings.DEFAULT_ORG_ID

    if not org_id:
        logger.warning(f"User {user_id} has no bound organization")
        raise OrgResolutionError("No organization bound to this user")

    logger.info(f"Resolved org {org_id} for user {user_id}")
    return OrgContext(user_id=user_id, org_id=str(org_id), access_token=access_token, client=client)
