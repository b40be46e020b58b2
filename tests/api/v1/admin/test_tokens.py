"""Test cases for the admin token endpoints."""

from collections.abc import Callable

import pytest
from fastapi import FastAPI, status
from httpx import ASGITransport, AsyncClient

from tokenstore.core.config import get_settings
from tokenstore.schemas.token import AccessTokenRecord, AuthenticatedUser
from tokenstore.services.token import TokenStore

pytestmark = pytest.mark.asyncio(loop_scope="function")

BASE_URL = "/api/v1/admin/tokens"
RecordFactory = Callable[..., AccessTokenRecord]


async def _insert(store: TokenStore, record: AccessTokenRecord) -> None:
    await store.insert(record.access_token, record.consumer_key, record)


@pytest.mark.asyncio
async def test_requires_bearer_token(test_app: FastAPI) -> None:
    """Test requests without the admin token are rejected."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as anonymous:
        response = await anonymous.get(f"{BASE_URL}/tenants/1")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["content-type"] == "application/problem+json"

        response = await anonymous.get(
            f"{BASE_URL}/tenants/1",
            headers={"Authorization": "Bearer wrong"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_list_and_get_tokens(
    test_client: AsyncClient,
    store: TokenStore,
    make_record: RecordFactory,
) -> None:
    """Test listing a tenant and fetching one token."""
    await _insert(store, make_record("T1", scopes="read"))
    secondary = AuthenticatedUser(username="bob", user_store_domain="SECONDARY", tenant_id=1)
    await _insert(store, make_record("T2", authenticated_user=secondary))

    response = await test_client.get(f"{BASE_URL}/tenants/1")
    assert response.status_code == status.HTTP_200_OK
    assert {t["token_id"] for t in response.json()} == {"T1", "T2"}

    response = await test_client.get(
        f"{BASE_URL}/tenants/1",
        params={"user_store_domain": "secondary"},
    )
    assert [t["token_id"] for t in response.json()] == ["T2"]

    response = await test_client.get(f"{BASE_URL}/T1")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["scopes"] == ["read"]
    assert data["token_state"] == "ACTIVE"
    assert data["masked_token"].endswith("t-T1")
    assert "at-T1" not in response.text

    response = await test_client.get(f"{BASE_URL}/missing")
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_revoke_token(test_client: AsyncClient, store: TokenStore, make_record: RecordFactory) -> None:
    """Test revocation through the API."""
    await _insert(store, make_record("T1", token_binding_reference="sess-1"))

    response = await test_client.get(f"{BASE_URL}/sessions/sess-1")
    assert response.json() == {"session_id": "sess-1", "token_ids": ["T1"]}

    response = await test_client.post(f"{BASE_URL}/T1/revoke")
    assert response.status_code == status.HTTP_204_NO_CONTENT

    record = await store.get_by_token_id("T1")
    assert record is not None
    assert record.token_state == "REVOKED"

    response = await test_client.get(f"{BASE_URL}/sessions/sess-1")
    assert response.json()["token_ids"] == []

    response = await test_client.post(f"{BASE_URL}/T1/revoke")
    assert response.status_code == status.HTTP_204_NO_CONTENT


@pytest.mark.asyncio
async def test_revoke_unknown_token(test_client: AsyncClient) -> None:
    """Test store errors render as problem details."""
    response = await test_client.post(f"{BASE_URL}/missing/revoke")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    data = response.json()
    assert data["code"] == "TKN-60001"
    assert "missing" in data["detail"]


@pytest.mark.asyncio
async def test_rename_user_store(test_client: AsyncClient, store: TokenStore, make_record: RecordFactory) -> None:
    """Test user store rename through the API."""
    for i in range(2):
        user = AuthenticatedUser(username=f"user{i}", user_store_domain="OLD", tenant_id=7)
        await _insert(store, make_record(f"T{i}", authenticated_user=user))

    response = await test_client.put(
        f"{BASE_URL}/tenants/7/user-stores/old",
        json={"new_domain": "new"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "tenant_id": 7,
        "old_domain": "OLD",
        "new_domain": "NEW",
        "moved": 2,
    }
    assert len(await store.get_by_user_store(7, "NEW")) == 2

    response = await test_client.put(
        f"{BASE_URL}/tenants/7/user-stores/old",
        json={"new_domain": "  "},
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_rename_user_store_reports_normalized_domains(
    test_client: AsyncClient, store: TokenStore, make_record: RecordFactory
) -> None:
    """Test the response names the domains the tokens were moved between."""
    user = AuthenticatedUser(username="user0", user_store_domain="OLD", tenant_id=7)
    await _insert(store, make_record("T0", authenticated_user=user))

    response = await test_client.put(
        f"{BASE_URL}/tenants/7/user-stores/%20old%20",
        json={"new_domain": " new "},
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["old_domain"] == "OLD"
    assert body["new_domain"] == "NEW"
    assert body["moved"] == 1
    assert len(await store.get_by_user_store(7, "NEW")) == 1


@pytest.mark.asyncio
async def test_admin_api_disabled(test_client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the admin API refuses every call when no token is configured."""
    settings = get_settings()

    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", None)

    response = await test_client.get(f"{BASE_URL}/tenants/1")
    assert response.status_code == status.HTTP_403_FORBIDDEN
