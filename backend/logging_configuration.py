"""The logging configuration for the API."""


def get_logging_configuration(level, uvicorn=True):
    """Return a dictionary to build the logging configuration."""

    logging_configuration = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(levelname)-5s [%(filename)s:%(funcName)s:%(lineno)d] %(message)s"}
        },
        "handlers": {
            "api": {"class": "logging.StreamHandler", "stream": "ext://sys.stdout", "formatter": "default"}
        },
        "loggers": {},
        "root": {
            "level": level,
            "handlers": ["api"],
        },
    }
    if uvicorn:
        logging_configuration["loggers"]["uvicorn.error"] = {
            "level": level, "propagate": False, "handlers": ["api"]
        }

    return logging_configuration
