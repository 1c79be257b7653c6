from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl
from app.config import Settings
import json
import logging
import re

logger = logging.getLogger(__name__)

_BRACKET_KEY = re.compile(r"\[([^\]]*)\]")


def parse_php_form(body: str) -> Dict[str, Any]:
    """
    Разобрать form-urlencoded тело в формате PHP

    data[FIELDS][ID]=42&auth[domain]=x -> {"data": {"FIELDS": {"ID": "42"}}, "auth": {"domain": "x"}}.
    Пустые скобки (a[]=1&a[]=2) дают список.
    """
    result: Dict[str, Any] = {}
    for raw_key, value in parse_qsl(body, keep_blank_values=True):
        head, _, rest = raw_key.partition("[")
        path: List[str] = [head]
        if rest:
            path.extend(_BRACKET_KEY.findall("[" + rest))

        node: Any = result
        for index, part in enumerate(path):
            last = index == len(path) - 1
            if isinstance(node, list):
                if last:
                    node.append(value)
                else:
                    child = {}
                    node.append(child)
                    node = child
                continue

            if last:
                node[part] = value
                break

            next_is_list = path[index + 1] == ""
            child = node.get(part)
            if not isinstance(child, (dict, list)):
                child = [] if next_is_list else {}
                node[part] = child
            node = child
    return result


class WebhookValidator:
    """Проверка входящих вебхуков Bitrix24"""

    def __init__(self, settings: Settings):
        self.user_agents = [ua.lower() for ua in settings.webhook_user_agents]
        self.application_token = settings.bitrix24_application_token

    def validate(self, headers: Mapping[str, str], raw_body: bytes) -> Optional[Dict[str, Any]]:
        """
        Проверить заголовки и тело запроса

        Args:
            headers: Заголовки запроса (поиск без учета регистра)
            raw_body: Тело запроса

        Returns:
            Разобранное тело вебхука или None, если запрос отклонен
        """
        lowered = {key.lower(): value for key, value in headers.items()}

        user_agent = lowered.get("user-agent", "")
        if not user_agent or not any(ua in user_agent.lower() for ua in self.user_agents):
            logger.warning(
                "Отклонен вебхук: неизвестный User-Agent",
                extra={"context": {"user_agent": user_agent}},
            )
            return None

        content_type = lowered.get("content-type", "").lower()
        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Отклонен вебхук: тело не в UTF-8")
            return None

        if "application/json" in content_type:
            try:
                data = json.loads(body)
            except json.JSONDecodeError as e:
                logger.error(
                    "Отклонен вебхук: некорректный JSON",
                    extra={"context": {"error": str(e)}},
                )
                return None
        elif "application/x-www-form-urlencoded" in content_type:
            data = parse_php_form(body)
        else:
            logger.warning(
                "Отклонен вебхук: неподдерживаемый Content-Type",
                extra={"context": {"content_type": content_type}},
            )
            return None

        if not isinstance(data, dict):
            logger.warning("Отклонен вебхук: тело не является JSON-объектом")
            return None

        if not self._check_application_token(data):
            return None

        return data

    def _check_application_token(self, data: Dict[str, Any]) -> bool:
        auth = data.get("auth")
        token = auth.get("application_token") if isinstance(auth, dict) else None

        if not self.application_token:
            if token:
                logger.warning("BITRIX24_APPLICATION_TOKEN не задан, токен вебхука не проверяется")
            return True

        if not token:
            logger.warning("Вебхук без application_token, проверка пропущена")
            return True

        if token != self.application_token:
            logger.error("Отклонен вебхук: неверный application_token")
            return False
        return True
