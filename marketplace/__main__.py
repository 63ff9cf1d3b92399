"""
Run the marketplace API with uvicorn: ``python -m marketplace``.
"""

from __future__ import annotations

import logging

import uvicorn

from marketplace.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    uvicorn.run(
        "marketplace.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
