from app.auth.dependencies import get_current_user
from app.auth.security import verify_password, create_access_token

__all__ = ["get_current_user", "verify_password", "create_access_token"]
