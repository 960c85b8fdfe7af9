#!/usr/bin/env python3
"""
Story Studio - Main Entry Point

Runs the generation API with uvicorn.

Usage:
    python main.py
    python main.py --reload
    python main.py --host 0.0.0.0 --port 8080
"""

import argparse
import sys

import uvicorn


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        description="Run the Story Studio generation API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --reload
  %(prog)s --host 0.0.0.0 --port 8080 --workers 1
        """
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Bind address (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port (default: 8000)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (development)"
    )
    # Job slots and page locks are per process
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker processes (default: 1; more need sticky routing by story id)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Uvicorn log level (default: info)"
    )
    return parser


def main() -> int:
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args()

    if args.reload and args.workers > 1:
        print("Error: --reload cannot be combined with --workers", file=sys.stderr)
        return 1

    uvicorn.run(
        "src.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level=args.log_level,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
