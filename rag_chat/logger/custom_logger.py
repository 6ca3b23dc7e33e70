import logging

from rich.console import Console
from rich.logging import RichHandler

# -------------------------------------------------
# Console with proper color handling
# -------------------------------------------------
console = Console(force_terminal=True, color_system="truecolor")

# -------------------------------------------------
# Libraries that flood the console at INFO
# -------------------------------------------------
NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "sqlalchemy.dialects": logging.WARNING,
    "sqlalchemy.orm": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
    "urllib3": logging.WARNING,
}


class CustomLogger:
    """
    Configures root logging once with a Rich handler and hands out named loggers.
    """

    _configured = False

    def __init__(self, level: int = logging.INFO):
        if not CustomLogger._configured:
            logging.basicConfig(
                level=level,
                format="%(message)s",  # Rich handles formatting
                datefmt="[%H:%M:%S.%f]",
                handlers=[
                    RichHandler(
                        console=console,
                        rich_tracebacks=True,
                        tracebacks_show_locals=False,
                        show_time=True,
                        show_level=True,
                        show_path=True,
                        log_time_format="%H:%M:%S.%f",
                    )
                ],
            )
            for name, lvl in NOISY_LOGGERS.items():
                logging.getLogger(name).setLevel(lvl)
            CustomLogger._configured = True

    def get_logger(self, name: str = "rag_chat") -> logging.Logger:
        return logging.getLogger(name)
