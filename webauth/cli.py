#!/usr/bin/env python3
"""
webauth/cli.py: operator entry point.

Subcommands:
  serve          run the web authentication server
  genjwtkey      print a new EC P-256 JWT signing key (private + public PEM)
  verify-audit   verify the hash chain of an audit log

Exit codes:
- 0: OK
- 1: verification failed / fatal configuration error
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .audit import LOG_NAME, verify_log_chain
from .errors import ConfigError
from .tokens import generate_jwt_key, load_token_key

logger = logging.getLogger("webauth")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .config import ServerConfig, load_settings
    from .main import create_app

    try:
        settings = load_settings()
        configure_logging(settings.LOG_LEVEL)
        config = ServerConfig.from_settings(settings)
    except ConfigError as e:
        configure_logging()
        logger.critical("Error: %s", e.message)
        return 1

    port = args.port or config.port
    app = create_app(config)

    logger.info("Starting Web Authentication Server")
    logger.info("Signing account %s on network %r", config.server_address, config.network_passphrase)
    logger.info("Listening on :%d", port)
    uvicorn.run(app, host=args.host, port=port, log_config=None)
    return 0


def _genjwtkey(args: argparse.Namespace) -> int:
    pem = generate_jwt_key()
    key = load_token_key(pem)
    print(pem, end="")
    print(key.public_pem(), end="")
    return 0


def _verify_audit(args: argparse.Namespace) -> int:
    path: Path = args.log
    if path.is_dir():
        path = path / LOG_NAME
    if not path.exists():
        print(f"FAIL: log not found: {path}", file=sys.stderr)
        return 1
    if verify_log_chain(path):
        print("OK")
        return 0
    print("FAIL", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="webauth", description="Account-signature web authentication server.")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Listen port (default: PORT setting)")
    serve.set_defaults(func=_serve)

    gen = sub.add_parser("genjwtkey", help="Generate an EC P-256 JWT signing key.")
    gen.set_defaults(func=_genjwtkey)

    va = sub.add_parser("verify-audit", help="Verify audit log hash chain.")
    va.add_argument(
        "log",
        type=Path,
        help=f"Path to the audit JSONL file or its directory (e.g. audit/{LOG_NAME})",
    )
    va.set_defaults(func=_verify_audit)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
