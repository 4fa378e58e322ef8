"""Main entry point for the agentbus orchestrator."""

import uvicorn
from dotenv import load_dotenv

from .api import create_fastapi_app
from .config import PROJECT_ROOT, Settings
from .logging_config import setup_logging


def main():
    """Run the orchestrator API."""
    load_dotenv(PROJECT_ROOT / ".env")

    settings = Settings.from_env()
    setup_logging(settings.log_level)

    app = create_fastapi_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
