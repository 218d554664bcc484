"""Caller identity and project-role checks for the /v1 routes.

Tokens are Supabase access tokens; the role comes from project_members.
"""

import asyncio
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.logging import get_logger
from app.core.schemas_graph import ProjectRole
from app.db.graph_store import GraphStore, get_graph_store

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """The verified caller. `role` is filled in by ProjectAccessChecker."""

    def __init__(self, user_id: str, token: str, role: Optional[ProjectRole] = None):
        self.user_id = user_id
        self.token = token
        self.role = role


def _lookup_user_id(token: str) -> Optional[str]:
    from app.db.supabase_client import get_supabase

    response = get_supabase().auth.get_user(token)
    user = getattr(response, "user", None)
    return str(user.id) if user else None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[AuthContext]:
    """Resolve the bearer token to a user; None when absent or rejected."""
    if credentials is None:
        return None
    try:
        user_id = await asyncio.to_thread(_lookup_user_id, credentials.credentials)
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        return None
    if user_id is None:
        return None
    return AuthContext(user_id=user_id, token=credentials.credentials)


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


class ProjectAccessChecker:
    """Dependency that requires one of the given roles on the path's project."""

    def __init__(self, *allowed_roles: ProjectRole):
        self.allowed_roles = set(allowed_roles or ProjectRole)

    async def __call__(
        self,
        project_id: str,
        auth: AuthContext = Depends(require_auth),
        store: GraphStore = Depends(get_graph_store),
    ) -> AuthContext:
        role = await store.get_member_role(project_id, auth.user_id)
        if role is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

        project_role = ProjectRole(role)
        if project_role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{project_role.value.capitalize()} role cannot perform this action",
            )
        auth.role = project_role
        return auth


require_project_member = ProjectAccessChecker()
require_project_editor = ProjectAccessChecker(ProjectRole.OWNER, ProjectRole.EDITOR)
require_project_owner = ProjectAccessChecker(ProjectRole.OWNER)
