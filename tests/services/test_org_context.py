import httpx
import pytest
import respx

from hare_pos.services.org_context import resolve_org_context
from hare_pos.services.supabase_client import SupabaseClient
from hare_pos.utils.exceptions import AuthenticationError, OrgResolutionError

BACKEND_URL = "http://backend.test"


@pytest.fixture
def backend_client():
    return SupabaseClient(access_token="token-1", base_url=BACKEND_URL, api_key="anon-key")


@pytest.mark.asyncio
async def test_employee_directory_wins(backend_client):
    with respx.mock(base_url=BACKEND_URL) as respx_mock:
        respx_mock.get("/auth/v1/user").mock(
            return_value=httpx.Response(200, json={"id": "user-1", "user_metadata": {"org_id": "meta-org"}})
        )
        employees = respx_mock.get("/rest/v1/employees").mock(
            return_value=httpx.Response(200, json=[{"org_id": "org-9"}])
        )

        ctx = await resolve_org_context("token-1", client=backend_client)

    assert ctx.org_id == "org-9"
    assert ctx.user_id == "user-1"
    assert ctx.client is backend_client
    assert employees.calls.last.request.url.params["user_id"] == "eq.user-1"


@pytest.mark.asyncio
async def test_falls_back_to_user_metadata(backend_client):
    with respx.mock(base_url=BACKEND_URL) as respx_mock:
        respx_mock.get("/auth/v1/user").mock(
            return_value=httpx.Response(200, json={"id": "user-1", "user_metadata": {"orgId": "meta-org"}})
        )
        respx_mock.get("/rest/v1/employees").mock(return_value=httpx.Response(200, json=[]))

        ctx = await resolve_org_context("token-1", client=backend_client)

    assert ctx.org_id == "meta-org"


@pytest.mark.asyncio
async def test_falls_back_to_default_org(backend_client, mocker, mock_settings):
    mocker.patch.object(mock_settings, "DEFAULT_ORG_ID", "default-org")
    with respx.mock(base_url=BACKEND_URL) as respx_mock:
        respx_mock.get("/auth/v1/user").mock(return_value=httpx.Response(200, json={"id": "user-1"}))
        respx_mock.get("/rest/v1/employees").mock(return_value=httpx.Response(200, json=[]))

        ctx = await resolve_org_context("token-1", client=backend_client)

    assert ctx.org_id == "default-org"


@pytest.mark.asyncio
async def test_unbound_user_is_rejected(backend_client, mock_settings):
    with respx.mock(base_url=BACKEND_URL) as respx_mock:
        respx_mock.get("/auth/v1/user").mock(return_value=httpx.Response(200, json={"id": "user-1"}))
        respx_mock.get("/rest/v1/employees").mock(return_value=httpx.Response(200, json=[]))

        with pytest.raises(OrgResolutionError):
            await resolve_org_context("token-1", client=backend_client)


@pytest.mark.asyncio
async def test_expired_token_is_not_authenticated(backend_client):
    with respx.mock(base_url=BACKEND_URL) as respx_mock:
        respx_mock.get("/auth/v1/user").mock(
            return_value=httpx.Response(401, json={"msg": "invalid JWT"})
        )

        with pytest.raises(AuthenticationError):
            await resolve_org_context("token-1", client=backend_client)
