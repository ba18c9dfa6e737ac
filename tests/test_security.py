from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from investdesk.api import install_error_handlers
from investdesk.config import Settings
from investdesk.models import Role, TokenPayload
from investdesk.security import BearerAuth
from investdesk.tokens import TokenService


def _build_app() -> tuple[FastAPI, TokenService]:
    settings = Settings(jwt_secret="tests-secret-key", database_path=Path("unused.sqlite3"))
    tokens = TokenService(settings)
    auth = BearerAuth(tokens)

    app = FastAPI()
    install_error_handlers(app)

    @app.get("/whoami")
    async def whoami(request: Request) -> Dict[str, Optional[str]]:
        identity = await auth.resolve_identity(request)
        return {"user_id": identity.user_id if identity else None}

    @app.get("/protected")
    async def protected(identity: TokenPayload = Depends(auth)) -> Dict[str, str]:
        return {"user_id": identity.user_id}

    return app, tokens


def _token(tokens: TokenService) -> str:
    return tokens.issue(TokenPayload(user_id="user-1", email="a@b.com", role=Role.USER))


def test_valid_bearer_token_resolves_identity() -> None:
    app, tokens = _build_app()
    with TestClient(app) as client:
        response = client.get("/whoami", headers={"Authorization": f"Bearer {_token(tokens)}"})
    assert response.json() == {"user_id": "user-1"}


def test_missing_header_resolves_to_no_identity() -> None:
    app, _ = _build_app()
    with TestClient(app) as client:
        response = client.get("/whoami")
    assert response.status_code == 200
    assert response.json() == {"user_id": None}


def test_bad_headers_resolve_to_no_identity() -> None:
    app, tokens = _build_app()
    expired = TokenService(
        Settings(jwt_secret="tests-secret-key", database_path=Path("unused.sqlite3")),
        clock=lambda: datetime.now(timezone.utc) - timedelta(days=60),
    )
    headers = [
        {"Authorization": f"Basic {_token(tokens)}"},
        {"Authorization": "Bearer"},
        {"Authorization": "Bearer not-a-token"},
        {"Authorization": f"Bearer {_token(expired)}"},
        {"Authorization": _token(tokens)},
    ]
    with TestClient(app) as client:
        for header in headers:
            response = client.get("/whoami", headers=header)
            assert response.json() == {"user_id": None}, header


def test_protected_route_rejects_missing_and_invalid_tokens_identically() -> None:
    app, tokens = _build_app()
    with TestClient(app) as client:
        missing = client.get("/protected")
        invalid = client.get("/protected", headers={"Authorization": "Bearer forged.token.value"})
        allowed = client.get("/protected", headers={"Authorization": f"Bearer {_token(tokens)}"})

    assert missing.status_code == 401
    assert invalid.status_code == 401
    assert missing.json() == invalid.json() == {"success": False, "error": "Unauthorized"}
    assert missing.headers["www-authenticate"] == "Bearer"
    assert allowed.status_code == 200
    assert allowed.json() == {"user_id": "user-1"}
