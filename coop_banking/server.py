"""
ASGI entry point and server runner
"""

import uvicorn

from .api import create_app
from .config import get_config
from .logging_config import setup_logging


config = get_config()
setup_logging(config.log_level, "coop", config.log_format, config.log_file)

app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "coop_banking.server:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
