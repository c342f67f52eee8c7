"""Entry point for the tooltrace gateway.

Usage:
    python -m tooltrace [--port 8790] [--host 127.0.0.1]
"""

from __future__ import annotations

import argparse

import uvicorn

from .app import create_app
from .config import TraceConfig


def main() -> None:
    config = TraceConfig()
    parser = argparse.ArgumentParser(description="tooltrace gateway")
    parser.add_argument("--port", type=int, default=config.port)
    parser.add_argument("--host", type=str, default=config.host)
    args = parser.parse_args()

    uvicorn.run(create_app(config), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
