"""
HomeBase — Entry Point.

Single entry point: `python main.py` starts the HTTP API with uvicorn.
"""

import logging

from src.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from src.api.app import create_app


def main() -> None:
    uvicorn.run(create_app(), host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
