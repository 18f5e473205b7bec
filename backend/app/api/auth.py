"""Bearer token authentication for the nudge API"""
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.database import get_supabase_public
from app.utils.monitoring import StructuredLogger

security = HTTPBearer()


def get_current_user(token: str):
    """Validate JWT token and return user"""
    try:
        # get_user validates the JWT against Supabase Auth
        response = get_supabase_public().auth.get_user(token)
        if not response or not response.user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
            )
        return response.user
    except HTTPException:
        raise
    except Exception as e:
        StructuredLogger.log_event(
            "auth_token_invalid",
            f"Token validation error: {str(e)}",
            level="WARNING",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )


async def get_authenticated_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Get authenticated user from JWT token"""
    return get_current_user(credentials.credentials)
