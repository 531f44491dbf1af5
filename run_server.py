#!/usr/bin/env python3
"""FastAPI server entry point for the research intelligence API."""

import argparse
import sys

import uvicorn
from dotenv import load_dotenv

from config.config import Config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Research Intelligence API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load first")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate configuration and exit non-zero if anything is wrong",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv(args.env_file)

    problems = Config(load_env_file=False).validate()
    for problem in problems:
        print(f"config: {problem}", file=sys.stderr)
    if args.check:
        return 1 if problems else 0

    uvicorn.run(
        "server.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
