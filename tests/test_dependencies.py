"""
Tests for the FastAPI authorization dependencies on a small app.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, Request
from httpx import ASGITransport, AsyncClient

from accessguard.api.dependencies.database import get_db
from accessguard.core.auth.backends import MemoryPolicyStore
from accessguard.core.auth.catalog import PermissionAction, Role
from accessguard.core.auth.dependencies import (
    OptionalPrincipal,
    conditional_permission,
    get_audit_sink,
    get_policy_store,
    require_editor_access,
    require_min_role_level,
    require_permission,
)
from accessguard.core.auth.exceptions import StoreFailure
from accessguard.core.auth.interceptor import PermissionContext, PermissionRule, ResourceIdSource


def build_app() -> FastAPI:
    app = FastAPI()

    @app.post("/donations")
    async def update_donation(
        ctx: PermissionContext = Depends(require_permission(
            "donations",
            PermissionAction.READ,
            resource_id=ResourceIdSource.body("donation_id", required=True),
        )),
    ):
        return {"granted_by": ctx.granted_by, "resource_id": ctx.resource_id}

    @app.get("/reports", dependencies=[Depends(require_min_role_level(50))])
    async def reports(request: Request):
        return {"granted_by": request.state.permission_context.granted_by}

    @app.api_route(
        "/events",
        methods=["GET", "DELETE"],
        dependencies=[Depends(conditional_permission([
            PermissionRule(
                lambda ctx: ctx.method == "DELETE",
                "events",
                PermissionAction.DELETE,
                "event deletion requires elevated access",
            ),
        ]))],
    )
    async def events():
        return {"ok": True}

    @app.get("/drafts", dependencies=[Depends(require_editor_access)])
    async def drafts():
        return []

    @app.get("/whoami")
    async def whoami(principal: OptionalPrincipal):
        return {"id": principal.id if principal else None}

    return app


@pytest_asyncio.fixture
async def mini_client(db, audit) -> AsyncGenerator[AsyncClient, None]:
    app = build_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_missing_required_resource_id(mini_client, user_factory, headers_for):
    user = await user_factory.create(role=Role.MODERATOR)

    response = await mini_client.post("/donations", json={}, headers=headers_for(user))

    assert response.status_code == 400
    assert "donation_id" in response.json()["detail"]


@pytest.mark.asyncio
async def test_resource_id_from_json_body(mini_client, user_factory, headers_for):
    user = await user_factory.create(role=Role.MODERATOR)

    response = await mini_client.post("/donations", json={"donation_id": "d-7"}, headers=headers_for(user))

    assert response.status_code == 200
    assert response.json() == {"granted_by": "resolver", "resource_id": "d-7"}


@pytest.mark.asyncio
async def test_min_role_level(mini_client, user_factory, headers_for):
    editor = await user_factory.create(role=Role.EDITOR)
    viewer = await user_factory.create(role=Role.VIEWER)

    allowed = await mini_client.get("/reports", headers=headers_for(editor))
    denied = await mini_client.get("/reports", headers=headers_for(viewer))

    assert allowed.status_code == 200
    assert allowed.json() == {"granted_by": "level"}
    assert denied.status_code == 403
    assert denied.json()["detail"] == "insufficient role level: required 50, current 30"


@pytest.mark.asyncio
async def test_conditional_permission(mini_client, user_factory, headers_for):
    user = await user_factory.create(role=Role.CLIENT)

    read = await mini_client.get("/events", headers=headers_for(user))
    delete = await mini_client.delete("/events", headers=headers_for(user))

    assert read.status_code == 200
    assert delete.status_code == 403
    assert delete.json()["detail"] == "event deletion requires elevated access"


@pytest.mark.asyncio
async def test_editor_preset(mini_client, user_factory, headers_for):
    editor = await user_factory.create(role=Role.EDITOR)
    client_user = await user_factory.create(role=Role.CLIENT)

    assert (await mini_client.get("/drafts", headers=headers_for(editor))).status_code == 200
    assert (await mini_client.get("/drafts", headers=headers_for(client_user))).status_code == 403


@pytest.mark.asyncio
async def test_optional_principal(mini_client, user_factory, headers_for):
    user = await user_factory.create()

    anonymous = await mini_client.get("/whoami")
    known = await mini_client.get("/whoami", headers=headers_for(user))

    assert anonymous.json() == {"id": None}
    assert known.json() == {"id": str(user.id)}


class UnavailableStore(MemoryPolicyStore):
    async def get_principal(self, principal_id):
        raise StoreFailure("policy store unavailable")


@pytest.mark.asyncio
async def test_store_failure_during_principal_lookup_is_forbidden(user_factory, headers_for):
    user = await user_factory.create(role=Role.EDITOR)
    app = build_app()
    app.dependency_overrides[get_policy_store] = lambda: UnavailableStore()
    app.dependency_overrides[get_audit_sink] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/drafts", headers=headers_for(user))

    assert response.status_code == 403
    assert response.json()["detail"] == "resolution error"
    assert "WWW-Authenticate" not in response.headers
