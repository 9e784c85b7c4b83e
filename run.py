#!/usr/bin/env python3
"""
Budget Ledger Entry Point

Starts the FastAPI server with the budget ledger. Host, port and storage
come from BUDGET_LEDGER_* environment variables.
"""

import sys

from budget_ledger.api import run_server
from budget_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Budget Ledger...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Budget Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
