from fastapi import Depends, HTTPException, status, Security
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from typing import Callable

from classtrack import models, db, crud
from classtrack.core.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# --- Core Dependencies ---

def get_db():
    """Dependency to get a new database session for each request."""
    db_session = db.SessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()


def get_current_user(
    token: str = Security(oauth2_scheme), db: Session = Depends(get_db)
) -> models.User:
    """
    Decodes the JWT token to get the email and fetches the
    staff account from the database.
    """
    email = decode_access_token(token)
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = crud.get_user_by_email(db, email=email)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_roles(*allowed_roles: models.UserRole) -> Callable:
    """
    A dependency factory that returns a dependency function accepting any of the given roles.
    Example Usage: current_user: models.User = Depends(require_roles(models.UserRole.class_teacher))
    """
    def role_checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(r.value for r in allowed_roles)}",
            )
        return current_user
    return role_checker


def require_class_id(user: models.User, status_code: int = status.HTTP_400_BAD_REQUEST) -> int:
    """Returns the caller's class id or rejects the request when no class is assigned."""
    if not user.class_id:
        raise HTTPException(
            status_code=status_code,
            detail="No class assigned to this account. Please ensure your account is assigned to a class.",
        )
    return user.class_id
