import argparse

import uvicorn
from apicopilot.core.settings import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apicopilot",
        description="Serve the API copilot (tool catalog, tool execution and SSE chat) over HTTP.",
    )
    parser.add_argument("--host", default=settings.API_HOST)
    parser.add_argument("--port", type=int, default=settings.API_PORT)
    parser.add_argument("--reload", action="store_true", default=settings.API_HOT_RELOAD)
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    uvicorn.run(
        "apicopilot.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )
