"""Entry point: ``python -m connect_core.server``."""
import uvicorn

from connect_core.config import ServerConfig
from connect_core.logging import setup_logging
from connect_core.server.app import create_app
from connect_core.server.database import get_database


def main() -> None:
    setup_logging(log_filename="connect_server.log")
    config = ServerConfig.from_env()
    app = create_app(get_database(config), config)
    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
