from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from splitledger.db.session import get_db
from splitledger.core.jwt_config import decode_token, get_token_from_cookie
from splitledger.core.logging_utils import get_logger
from splitledger.models.user import User

LOGGER = get_logger(__name__)

async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """Resolve the caller from the access token (cookie or bearer header)."""
    try:
        token = get_token_from_cookie(request=request)
        payload = decode_token(token)
        user_id = payload.get("sub")

        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid authentication credentials")

        res = await db.execute(select(User).where(User.id == int(user_id)))
        user = res.scalar_one_or_none()

        if user is None:
            raise HTTPException(status_code=401, detail="User not found")

        return user
    except HTTPException:
        raise
    except Exception:
        LOGGER.warning("Could not validate credentials", exc_info=True)
        raise HTTPException(status_code=401, detail="Could not validate credentials")
