#!/usr/bin/env python3
"""
Cooperative Lending Entry Point

Starts the FastAPI server (port 8090 by default) together with the hourly
delinquency sweep.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from coop_lending.api import run_server
from coop_lending.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Cooperative Lending engine...")
    print(f"Storage: {config.database_url}")
    print(f"Default policy: {config.default_policy}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Cooperative Lending engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
