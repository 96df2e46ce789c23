from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from simops.core.errors import NotFound
from simops.domain.models import User
from simops.persistence.repos.scopes import load_user_scopes
from simops.services.authz.scopes import AuthContext


async def load_auth_context(session: AsyncSession, user_id: str) -> AuthContext:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    scopes = await load_user_scopes(session, user_id)
    return AuthContext(user_id=user.id, role=user.role, scopes=tuple(scopes))
