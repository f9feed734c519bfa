from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.core.deps import get_auth_context
from app.schemas.auth import AuthContextData, AuthContextOut
from app.services.auth_context import AuthContext

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/context", response_model=AuthContextOut)
async def auth_context(context: AuthContext = Depends(get_auth_context)) -> AuthContextOut:
    return AuthContextOut(
        data=AuthContextData(
            role=context.primary_role,
            roles=list(context.role_names),
            permissions=sorted(context.permissions),
            source=context.source,
        ),
        generated_at=datetime.now(timezone.utc),
    )
