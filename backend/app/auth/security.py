from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
import secrets
import logging

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def verify_password(plain_password: str, expected_password: str) -> bool:
    """Сравнение паролей за постоянное время"""
    return secrets.compare_digest(plain_password.encode("utf-8"), expected_password.encode("utf-8"))


def create_access_token(data: Dict[str, Any], secret_key: str, expires_delta: timedelta) -> str:
    """Создать JWT токен доступа"""
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)


def verify_token(token: str, secret_key: str) -> Optional[Dict[str, Any]]:
    """Проверить JWT токен, вернуть payload или None"""
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Невалидный токен: {e}")
        return None
