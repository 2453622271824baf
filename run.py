#!/usr/bin/env python3
"""
Finance Core Entry Point

Builds the engine from configuration, sets up logging and serves the API.
The scheduler runs inside the API process for its whole lifetime.
"""

import sys

import uvicorn

from finance_core.api import create_app
from finance_core.config import get_config
from finance_core.logging_config import setup_logging
from finance_core.system import FinanceSystem


def main() -> None:
    config = get_config()
    logger = setup_logging(config.log_level, "finance_core", config.log_format, config.log_file)

    system = FinanceSystem(config=config)
    app = create_app(system, start_scheduler=config.scheduler_enabled)

    logger.info("Starting Finance Core API on %s:%s", config.api_host, config.api_port)
    try:
        uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down Finance Core")
    except Exception:
        logger.exception("Error running server")
        sys.exit(1)
    finally:
        system.storage.close()


if __name__ == "__main__":
    main()
