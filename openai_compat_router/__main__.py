#!/usr/bin/env python3
"""
Main entry point for the openai_compat_router package.
This allows the package to be run as: python -m openai_compat_router
"""

import argparse

import uvicorn

from .config import config, setup_logging


def main():
    """Main entry point for the package."""
    parser = argparse.ArgumentParser(
        description="Run the Anthropic to OpenAI compatibility router."
    )
    parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload on code changes."
    )
    parser.add_argument("--host", default=config.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.port, help="Port to bind to")
    args = parser.parse_args()

    # Setup logging for the main process
    setup_logging()

    if not config.check_env_file_exists():
        print("ℹ️  No .env file found, using environment variables and defaults.")
    print(
        f"✅ Router listening on http://{args.host}:{args.port} "
        f"(timeout={config.request_timeout}s, retries={config.max_retries})"
    )

    uvicorn.run(
        "openai_compat_router.server:app",
        host=args.host,
        port=args.port,
        log_config=None,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
