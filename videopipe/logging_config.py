import logging
import logging.handlers

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

# Filformat med operation-tag, så API-kald kan findes i loggen
FILE_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(operation)s] "
    "%(filename)s:%(lineno)d in %(funcName)s() - "
    "%(message)s"
)

# Loggers der larmer ved hver request eller hvert fil-kald
NOISY_LOGGERS = ("uvicorn.access", "aiofiles", "httpx")


class OperationFilter(logging.Filter):
    """Fills in `operation` for records logged without extra={"operation": ...}."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "operation"):
            record.operation = "-"
        return True


def setup_logging(settings: Settings) -> None:
    log_dir = settings.log_directory
    log_dir.mkdir(parents=True, exist_ok=True)
    level = settings.log_level.upper()

    # Konsol: Rich output. Job-stier kan indeholde [ ], så ingen markup
    console = Console(width=120)
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    rich_handler.setLevel(level)

    # Fil: roteres ved midnat, gemmes log_retention_days dage
    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        interval=1,
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.addFilter(OperationFilter())
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    # Root logger fanger alt, også scheduler og disposition
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(rich_handler)
    root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"Logging initialized - File: {settings.log_file_path}, "
        f"Level: {level}, "
        f"Retention: {settings.log_retention_days} days"
    )
