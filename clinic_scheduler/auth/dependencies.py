from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.orm import Session

from clinic_scheduler.auth import jwt_handler
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_patient(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_patient:
        raise HTTPException(status_code=403, detail="Only patients can perform this action.")
    return current_user


def get_current_provider(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_provider:
        raise HTTPException(status_code=403, detail="Only providers can perform this action.")
    return current_user
