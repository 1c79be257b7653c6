from fastapi import APIRouter, Depends, HTTPException, status
from datetime import timedelta
from app.schemas.auth import LoginRequest, LoginResponse
from app.config import Settings, get_settings
from app.auth.security import verify_password, create_access_token
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(login_data: LoginRequest, settings: Settings = Depends(get_settings)):
    """Авторизация администратора дашборда"""
    username = login_data.username.strip()
    password = login_data.password.strip()

    valid_username = verify_password(username, settings.admin_username.strip())
    valid_password = verify_password(password, settings.admin_password.strip())
    if not (valid_username and valid_password):
        logger.warning(f"Неудачная попытка входа: {username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный логин или пароль",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(
        data={"sub": username},
        secret_key=settings.secret_key,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )

    logger.info(f"Успешная авторизация: {username}")
    return LoginResponse(access_token=access_token, token_type="bearer")
