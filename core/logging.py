import logging

from core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once for the API process and the Celery worker."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL), format=LOG_FORMAT)
    # SQL echo is controlled by SQLALCHEMY_ECHO, keep the driver quiet otherwise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
