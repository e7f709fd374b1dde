"""
Serve the ClawLedger API with uvicorn.

The fallback poller, ranking calculator and token poller run inside the
app lifespan, so one process is the whole service. Apply migrations
first with `python scripts/migrate.py upgrade`.
"""

import uvicorn

from clawledger.api import create_api_app
from clawledger.config import get_settings
from clawledger.utils.logging import get_logger, setup_logging


def main():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    get_logger("run_api").info(
        "Starting API server",
        host=settings.api_host,
        port=settings.api_port,
        docs=f"http://{settings.api_host}:{settings.api_port}/docs",
    )

    uvicorn.run(
        create_api_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        ws="websockets",
        proxy_headers=settings.trust_forwarded_for,
    )


if __name__ == "__main__":
    main()
