from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from classtrack import schemas, crud, models
from classtrack.core.security import create_access_token
from classtrack.dependencies import get_db, get_current_user

router = APIRouter(tags=["Authentication"])


@router.post(
    "/token",
    response_model=schemas.Token,
    summary="Staff Login for Access Token"
)
def login(
    user_credentials: schemas.LoginRequest, db: Session = Depends(get_db)
):
    user = crud.authenticate_user(db, email=user_credentials.email, password=user_credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": user.email})

    return {"access_token": access_token, "token_type": "bearer"}


@router.get(
    "/me",
    response_model=schemas.UserOut,
    summary="Get current user's profile"
)
def read_users_me(current_user: models.User = Depends(get_current_user)):
    return current_user
