import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.auth import jwt_handler
from backend.core.enums import ActorRole
from backend.database import SessionLocal
from backend.models.user import User
from backend.services.authorization import Actor

security = HTTPBearer()


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        role_value = user.role if user is not None else None
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    # The stored role wins over whatever the token claims.
    try:
        role = ActorRole(role_value)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Unknown user role") from exc
    return Actor(id=user_id, role=role)
