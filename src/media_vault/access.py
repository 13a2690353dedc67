"""Caller identity and permission checks shared by the services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from media_vault.enums import Permission
from media_vault.errors import ForbiddenError
from media_vault.repositories.access import AccessRepository

_DUPLICATE_PERMISSIONS = {Permission.DUPLICATE_READ, Permission.DUPLICATE_DELETE}


@dataclass(frozen=True)
class SharedLinkAuth:
    id: str
    allow_upload: bool = False


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller.

    ``user_id`` is the acting user, or the link owner for shared-link access.
    ``api_key_permissions`` is ``None`` for full sessions and the granted
    scope for API keys.
    """

    user_id: str
    shared_link: SharedLinkAuth | None = None
    api_key_permissions: frozenset[Permission] | None = None


def require_upload_access(auth: AuthContext | None) -> AuthContext:
    if auth is None:
        raise ForbiddenError("Authentication required")
    if auth.shared_link is not None and not auth.shared_link.allow_upload:
        raise ForbiddenError("Shared link does not allow uploads")
    return auth


def require_access(
    access: AccessRepository,
    auth: AuthContext | None,
    permission: Permission,
    ids: Sequence[str],
) -> None:
    """Raise :class:`ForbiddenError` unless ``auth`` may apply ``permission`` to every id."""

    auth = require_upload_access(auth) if permission == Permission.ASSET_UPLOAD else auth
    if auth is None:
        raise ForbiddenError("Authentication required")

    if auth.api_key_permissions is not None and permission not in auth.api_key_permissions:
        raise ForbiddenError(f"Missing required permission: {permission.value}")

    requested = set(ids)
    if permission == Permission.ASSET_UPLOAD:
        if requested - {auth.user_id}:
            raise ForbiddenError("Cannot upload on behalf of another user")
        return

    if auth.shared_link is not None:
        raise ForbiddenError(f"Not found or no {permission.value} access")

    if permission in _DUPLICATE_PERMISSIONS:
        allowed = access.check_duplicate_access(auth.user_id, list(requested))
    else:
        allowed = access.check_owner_access(auth.user_id, list(requested))

    if requested - allowed:
        raise ForbiddenError(f"Not found or no {permission.value} access")


__all__ = ["AuthContext", "SharedLinkAuth", "require_access", "require_upload_access"]
