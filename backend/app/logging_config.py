import json
import logging
import os
from logging.handlers import RotatingFileHandler
from app.config import Settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ContextFormatter(logging.Formatter):
    """
    Форматтер, дописывающий структурированный контекст к строке лога

    Контекст передается через extra={"context": {...}} и выводится
    как JSON после разделителя " | Context: ".
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " | Context: " + json.dumps(context, ensure_ascii=False, default=str)
        return line


def setup_logging(settings: Settings) -> None:
    """Настроить логирование: консоль + файл с ротацией по размеру"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # Повторный вызов (например, в тестах) не должен дублировать обработчики
    for handler in list(root.handlers):
        if getattr(handler, "_lk_sync_handler", False):
            root.removeHandler(handler)
            handler.close()

    formatter = ContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._lk_sync_handler = True
    root.addHandler(console)

    if not settings.log_enabled:
        return

    log_dir = os.path.dirname(settings.log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        settings.log_file,
        maxBytes=settings.log_max_size,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler._lk_sync_handler = True
    root.addHandler(file_handler)
