"""
Supabase Client: thin async PostgREST/GoTrue client over httpx.

Covers only what the POS needs: the current user, table select/insert/update
with PostgREST filters, and RPC calls. Every call opens a short-lived
AsyncClient and maps backend failures to PersistenceError.
"""
import httpx
import logging
from typing import Any, Dict, Iterable, List, Optional

from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def eq(value: Any) -> str:
    """PostgREST equality filter."""
    return f"eq.{value}"


def gte(value: Any) -> str:
    return f"gte.{value}"


def lte(value: Any) -> str:
    return f"lte.{value}"


def in_(values: Iterable[Any]) -> str:
    joined = ",".join(str(v) for v in values)
    return f"in.({joined})"


class SelectResult:
    def __init__(self, rows: List[dict], count: Optional[int] = None):
        self.rows = rows
        self.count = count


class SupabaseClient:
    """REST client bound to one caller's access token (or the anon key)."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or settings.SUPABASE_ANON_KEY or ""
        self.access_token = access_token
        self.timeout = timeout or settings.SUPABASE_TIMEOUT

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-client-info": settings.CLIENT_INFO,
        }

    async def _request(self, method: str, path: str, *, headers: Dict[str, str] = None, **kwargs) -> httpx.Response:
        merged = {**self.headers, **(headers or {})}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
                response = await client.request(method, path, headers=merged, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Backend request failed: {method} {path}: {e}")
            raise PersistenceError("Backend unreachable") from e

        if response.is_error:
            code = None
            message = response.text
            try:
                body = response.json()
                if isinstance(body, dict):
                    code = body.get("code")
                    message = body.get("message") or body.get("msg") or message
            except ValueError:
                pass
            logger.error(f"Backend error {response.status_code} on {method} {path}: {code} {message}")
            raise PersistenceError(message, code=code, status_code=response.status_code)
        return response

    # ========== Auth ==========

    async def get_user(self) -> Optional[dict]:
        """Return the user behind the access token, or None when the session is missing/expired."""
        if not self.access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except PersistenceError as e:
            if e.status_code in (401, 403):
                return None
            raise
        user = response.json()
        return user if isinstance(user, dict) and user.get("id") else None

    # ========== Tables ==========

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        count: bool = False,
    ) -> SelectResult:
        params: Dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        if offset:
            params["offset"] = offset

        headers = {"Prefer": "count=exact"} if count else None
        response = await self._request("GET", f"/rest/v1/{table}", params=params, headers=headers)

        total = None
        content_range = response.headers.get("content-range", "")
        if count and "/" in content_range:
            tail = content_range.rsplit("/", 1)[1]
            total = int(tail) if tail.isdigit() else None

        rows = response.json()
        return SelectResult(rows if isinstance(rows, list) else [], total)

    async def select_one(self, table: str, columns: str = "*", filters: Optional[Dict[str, str]] = None) -> Optional[dict]:
        """First matching row or None (no error when nothing matches)."""
        result = await self.select(table, columns=columns, filters=filters, limit=1)
        return result.rows[0] if result.rows else None

    async def insert(self, table: str, rows: List[dict]) -> List[dict]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        data = response.json() if response.content else []
        return data if isinstance(data, list) else []

    async def update(self, table: str, values: dict, filters: Dict[str, str]) -> List[dict]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=filters,
            json=values,
            headers={"Prefer": "return=representation"},
        )
        data = response.json() if response.content else []
        return data if isinstance(data, list) else []

    # ========== RPC ==========

    async def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        response = await self._request("POST", f"/rest/v1/rpc/{function}", json=params)
        return response.json() if response.content else None

    async def ping(self) -> bool:
        """Reachability check against the REST root."""
        await self._request("GET", "/rest/v1/")
        return True
