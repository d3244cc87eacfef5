#!/usr/bin/env python3
"""
Wallet Ledger Service Entry Point

Starts the FastAPI server on the configured host and port.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from wallet_ledger.api import run_server
from wallet_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Wallet Ledger Service...")
    print(f"Database: {config.database_url.split('@')[-1]}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Wallet Ledger Service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
