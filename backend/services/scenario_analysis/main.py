#!/usr/bin/env python3
"""
Scenario Analysis Service Entry Point
"""

import os
import uvicorn
import multiprocessing

from services.scenario_analysis.config import settings


def main():
    """Main entry point for the scenario analysis service"""
    # Calculate workers based on CPU count in production
    workers = settings.api_workers
    if workers > 1:
        workers = min(workers, multiprocessing.cpu_count())

    # Use reload only in development (single worker)
    reload = workers == 1 and os.getenv("ENVIRONMENT", "development") == "development"

    uvicorn.run(
        "services.scenario_analysis.app:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=workers,
        log_level=settings.log_level.lower(),
        access_log=True,
        reload=reload
    )


if __name__ == "__main__":
    main()
