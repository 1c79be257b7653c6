from pydantic import BaseModel


class LoginRequest(BaseModel):
    """Запрос авторизации в дашборде"""
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
