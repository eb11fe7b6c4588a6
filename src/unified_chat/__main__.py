"""Entry point for `python -m unified_chat`."""

import logging

import uvicorn

from .config import settings


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s", datefmt="%H:%M:%S")
    uvicorn.run(
        "unified_chat.app:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
