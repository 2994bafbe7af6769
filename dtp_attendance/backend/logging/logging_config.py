import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..config.config import settings

SCAN_EVENT_LOGGER_NAME = "dtp_attendance.scan_events"


def setup_logging(log_dir: str = None):
    """
    Uygulama genelinde kullanılacak olan merkezi loglama yapılandırmasını kurar.

    Loglar hem konsola hem de belirli bir boyuta ulaştığında dönen bir dosyaya
    (app.log) yazılır. Tarama olayları (scan events) ise denetim için ayrı bir
    dosyaya (scan_events.log), satır başına bir JSON nesnesi olarak yazılır.
    """
    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    # Zaman - Modül Adı - Seviye - Mesaj
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    # Uvicorn gibi kütüphanelerin varsayılan handler'larını temizle.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    file_handler = RotatingFileHandler(
        directory / "app.log",
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)

    # Olay logu: mesajın kendisi zaten JSON, ek format yok.
    event_logger = logging.getLogger(SCAN_EVENT_LOGGER_NAME)
    event_logger.setLevel(logging.INFO)
    event_logger.handlers.clear()
    event_handler = RotatingFileHandler(
        directory / "scan_events.log",
        maxBytes=5*1024*1024,
        backupCount=5
    )
    event_handler.setFormatter(logging.Formatter("%(message)s"))
    event_logger.addHandler(event_handler)
