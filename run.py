#!/usr/bin/env python3
"""
Cooperative Back Office Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

from coop_banking.config import get_config
from coop_banking.server import run_server


if __name__ == "__main__":
    config = get_config()
    print("Starting Cooperative Back Office...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down Cooperative Back Office...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
