#!/usr/bin/env python3
"""
ComfyGraph Launcher

Starts the FastAPI backend server.
API docs at http://localhost:8010/docs
"""

import os
import sys
import argparse

# Ensure we're using the right Python path
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, BASE_DIR)

from settings.settings_manager import SettingsManager


def run_server(host: str, port: int, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"""
    ============================================================
                        ComfyGraph v1.0
             ComfyUI graph builder and validator
    ============================================================
      Backend:  http://{host}:{port}
      API Docs: http://{host}:{port}/docs
    ============================================================
    """)

    uvicorn.run(
        "backend.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


def main():
    settings = SettingsManager()
    parser = argparse.ArgumentParser(description="ComfyGraph Launcher")
    parser.add_argument("--host", default=settings.get("server.host", "127.0.0.1"), help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.get("server.port", 8010), help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev mode)")

    args = parser.parse_args()
    run_server(args.host, args.port, args.reload)


if __name__ == "__main__":
    main()
