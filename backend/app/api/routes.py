from fastapi import APIRouter
from app.api import auth, data, utils, webhook

api_router = APIRouter()

# Роутер авторизации (без защиты)
api_router.include_router(auth.router)

# Роутер webhook (без защиты, так как вызывается извне)
api_router.include_router(webhook.router)

api_router.include_router(utils.router)

# Защищенные роутеры
api_router.include_router(data.router)
