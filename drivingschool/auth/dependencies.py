from datetime import datetime

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from drivingschool.auth import jwt_handler
from drivingschool.core import config
from drivingschool.database import get_db
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

security = HTTPBearer(auto_error=False)


def get_storage(db: Session = Depends(get_db)) -> DatabaseStorage:
    return DatabaseStorage(db)


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    storage: DatabaseStorage = Depends(get_storage),
) -> User:
    token = request.cookies.get(config.SESSION_COOKIE_NAME)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        raise _unauthorized()

    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.InvalidTokenError as exc:
        raise _unauthorized() from exc

    user_id = payload.get("sub")
    session_id = payload.get("sid")
    if not user_id or not session_id:
        raise _unauthorized()

    auth_session = storage.get_auth_session(session_id)
    if auth_session is None or auth_session.user_id != user_id or auth_session.expires_at <= datetime.now():
        raise _unauthorized()

    user = storage.get_user(user_id)
    if user is None:
        raise _unauthorized()
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    request.state.auth_session = auth_session
    return user


def require_role(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


require_admin = require_role("admin")
require_staff = require_role("admin", "instructor")


def is_staff(user: User) -> bool:
    return user.role in ("admin", "instructor")


def ensure_course_access(storage: DatabaseStorage, course_id: str, user: User) -> None:
    """Students need an active enrollment; staff can always see course material."""
    if is_staff(user):
        return
    enrollment = storage.get_enrollment(course_id, user.id)
    if enrollment is None or not enrollment.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not enrolled in this course")
