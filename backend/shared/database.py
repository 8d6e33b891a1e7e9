import os
import logging
from functools import lru_cache

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_database_url(service_name: str) -> str:
    """Resolve the database URL for a service from its environment.

    ``<SERVICE>_DB_URL`` wins when set (handy for SQLite in development);
    otherwise a PostgreSQL URL is assembled from the host/port/user/name
    variables and a password is required.
    """
    svc = service_name.upper()

    explicit_url = os.getenv(f"{svc}_DB_URL")
    if explicit_url:
        logger.info(f"Using explicit database URL for {service_name}")
        return explicit_url
    
    # Get service-specific database configuration with fallbacks
    host = os.getenv(f"{svc}_DB_HOST", os.getenv("DATABASE_HOST", "localhost"))
    port = int(os.getenv(f"{svc}_DB_PORT", os.getenv("DATABASE_PORT", "5432")))
    user = os.getenv(f"{svc}_DB_USER", f"{service_name}_user")
    password = os.getenv(f"{svc}_DB_PASSWORD")
    name = os.getenv(f"{svc}_DB_NAME", f"{service_name}_db")
    sslmode = os.getenv(f"{svc}_DB_SSLMODE", os.getenv("DATABASE_SSLMODE", "prefer"))

    if password is None:
        logger.error("Missing password for %s; please set %s_DB_PASSWORD", service_name, svc)
        raise EnvironmentError(f"{svc}_DB_PASSWORD is required")

    url = f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"
    
    logger.info(f"Database URL for {service_name}: postgresql://{user}@{host}:{port}/{name}")
    
    return url
