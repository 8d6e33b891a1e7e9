import logging
import sys

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("aiokafka", "kafka", "sqlalchemy.engine", "uvicorn.access")


def setup_logging(service_name: str, level: str = "INFO") -> logging.Logger:
    """Configure root logging for the service and return its named logger"""

    formatter = logging.Formatter(
        fmt=f'%(asctime)s - {service_name} - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Installed once, so reloading the app module does not duplicate output
    if not any(getattr(h, "_scenario_analysis", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._scenario_analysis = True
        root_logger.addHandler(console_handler)

    # Library chatter stays at WARNING unless the service itself runs at DEBUG
    if root_logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)
