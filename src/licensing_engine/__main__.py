"""Run the API server: `python -m licensing_engine`."""

import logging

import uvicorn

from licensing_engine.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "Starting licensing engine on %s:%s", settings.host, settings.port
    )
    uvicorn.run(
        "licensing_engine.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
