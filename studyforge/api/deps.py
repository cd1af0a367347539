from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from studyforge.core.security import decode_access_token
from studyforge.models.user import User
from studyforge.services.storage import Storage, open_storage

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_storage() -> Iterator[Storage]:
    with open_storage() as storage:
        yield storage


def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    storage: Storage = Depends(get_storage),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception
    user_id = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    try:
        user = storage.get_user(int(user_id))
    except ValueError:
        raise credentials_exception
    if user is None:
        raise credentials_exception

    # Picked up by the request logging middleware
    request.state.user_id = user.id
    return user
