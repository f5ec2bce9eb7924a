"""Command-line entrypoint: run the relay under uvicorn."""

import structlog
import uvicorn

from relay.server.settings import RelayServerSettings

logger = structlog.get_logger()


def main() -> None:  # pragma: no cover
    settings = RelayServerSettings()
    logger.info("starting relay server", host=settings.host, port=settings.port)
    # get_app configures logging itself, so uvicorn must not install its own config
    uvicorn.run(
        "relay.server.app:get_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
        ws="websockets",
    )


if __name__ == "__main__":  # pragma: no cover
    main()
