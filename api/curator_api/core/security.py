import hashlib
import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from curator_api.core.config import Settings, get_settings
from curator_api.services.repository import RepositoryUnavailableError, get_repository

CATALOG_READ = "catalog:read"
MODERATION_READ = "moderation:read"
MODERATION_WRITE = "moderation:write"
INGEST_WRITE = "ingest:write"

# Moderation scopes belong to the admin role only.
ROLE_SCOPES: dict[str, frozenset[str]] = {
    "user": frozenset({CATALOG_READ}),
    "admin": frozenset({CATALOG_READ, MODERATION_READ, MODERATION_WRITE}),
}
DEFAULT_ROLE = "user"


class PrincipalType(str, Enum):
    HUMAN = "human"
    MACHINE = "machine"


@dataclass(slots=True)
class Principal:
    """Authenticated caller: an admin reviewer or a crawler module."""

    principal_type: PrincipalType
    subject: str
    scopes: set[str]
    role: str | None = None
    actor_id: str | None = None

    def missing_scopes(self, required: set[str]) -> set[str]:
        return set(required) - set(self.scopes)


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def require_scopes(principal: Principal, required: set[str]) -> None:
    missing = principal.missing_scopes(required)
    if missing:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"missing required scopes: {sorted(missing)}",
        )


async def authenticate_module(repository, module_id: str, api_key: str) -> Principal | None:
    """Match an API key against the module's stored key hashes; None when nothing matches."""
    key_hash = hash_api_key(api_key)
    for record in await repository.get_machine_credentials(module_id):
        if hmac.compare_digest(record.key_hash, key_hash):
            return Principal(
                principal_type=PrincipalType.MACHINE,
                subject=record.module_id,
                scopes=set(record.scopes),
                actor_id=record.module_id,
            )
    return None


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    if not x_api_key or not x_module_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"machine auth requires {settings.api_key_header} and X-Module-Id",
        )

    try:
        principal = await authenticate_module(repository, x_module_id, x_api_key)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")
    return principal


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _bearer_token(authorization)
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Supabase auth is not configured")

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        scopes=set(ROLE_SCOPES[role]),
        role=role,
        actor_id=user_id,
    )


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="human auth requires bearer token")
    token = token.strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")
    return token


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(base_url=supabase_url.rstrip("/"), timeout=timeout_seconds) as client:
            response = await client.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": supabase_anon_key},
            )
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Supabase auth verification failed")
    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # user_metadata is client-writable, so only app_metadata is trusted.
    app_metadata = user.get("app_metadata") or {}
    role = app_metadata.get("role") if isinstance(app_metadata, dict) else None
    return role if isinstance(role, str) and role in ROLE_SCOPES else DEFAULT_ROLE
