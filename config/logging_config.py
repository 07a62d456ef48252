import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level="INFO"):
    """Configure root logging for CLI, API and DAG entry points."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler()])

    # pymongo and paramiko are chatty at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
