#!/usr/bin/env python3
"""
DocVerify Command Line Interface.

Provides commands for running and using DocVerify:
    - serve: Start the API server
    - hash: Fingerprint a file, a string or a JSON document
    - merkle-root: Merkle root of a list of digests
    - proof: Inclusion proof for one digest of a list
    - check: Verify configuration and collaborator availability

Usage:
    docverify serve [--host HOST] [--port PORT] [--debug] [--production]
    docverify hash FILE | --text TEXT | --json FILE
    docverify merkle-root DIGEST... | --file FILE
    docverify proof (--index N | --leaf DIGEST) DIGEST... | --file FILE
    docverify check
    docverify --version
"""

import argparse
import json
import os
import sys

__version__ = "0.1.0"


def _setup(args):
    from dotenv import load_dotenv

    from config import DocVerifyConfig
    from monitoring import configure_logging

    load_dotenv()
    config = DocVerifyConfig.from_env()
    configure_logging(
        level=getattr(args, "log_level", None) or config.log_level,
        json_output=config.log_format == "json",
    )
    return config


def cmd_serve(args):
    """Start the DocVerify API server."""
    from api import create_app

    config = _setup(args)
    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting DocVerify API server on {host}:{port}")
    flask_app = create_app(config=config)

    if args.production:
        try:
            import gunicorn.app.base
        except ImportError:
            print("Error: gunicorn not installed. Install with: pip install docverify[production]")
            return 1

        class StandaloneApplication(gunicorn.app.base.BaseApplication):
            """Gunicorn WSGI wrapper configured from a dictionary of options."""

            def __init__(self, app, options=None):
                self.options = options or {}
                self.application = app
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                return self.application

        options = {
            "bind": f"{host}:{port}",
            "workers": args.workers or int(os.getenv("WORKERS", 4)),
            "worker_class": "sync",
            "timeout": 60,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(flask_app, options).run()
    else:
        flask_app.run(host=host, port=port, debug=debug)
    return 0


def _read_digests(args) -> list[str]:
    digests = list(args.digests or [])
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            digests.extend(line.strip() for line in f if line.strip())
    return digests


def cmd_hash(args):
    """Print the SHA-256 fingerprint of the given input."""
    from fingerprint import hash_bytes, hash_file, hash_structured

    if args.text is not None:
        print(hash_bytes(args.text))
    elif args.json:
        with open(args.json, encoding="utf-8") as f:
            print(hash_structured(json.load(f)))
    elif args.path:
        print(hash_file(args.path))
    else:
        print("Error: provide a file, --text or --json", file=sys.stderr)
        return 1
    return 0


def cmd_merkle_root(args):
    from merkle import build_root

    print(build_root(_read_digests(args)))
    return 0


def cmd_proof(args):
    """Print an inclusion proof as JSON."""
    from errors import DocVerifyError
    from merkle import build_proof, build_proof_for_leaf

    digests = _read_digests(args)
    try:
        if args.leaf:
            proof = build_proof_for_leaf(digests, args.leaf)
        else:
            proof = build_proof(digests, args.index)
    except DocVerifyError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(proof.to_dict(), indent=2))
    return 0


def cmd_check(args):
    """Check configuration and collaborator availability."""
    from errors import DocVerifyError
    from service import DocVerifyService

    config = _setup(args)
    print("DocVerify Configuration Check")
    print("=" * 40)
    for key, value in config.summary().items():
        print(f"  {key}: {value}")
    print()

    try:
        service = DocVerifyService.from_config(config)
    except DocVerifyError as e:
        print(f"  ✗ Startup: {e.message}")
        return 1

    try:
        health = service.health("cli")
    finally:
        service.close()

    all_ok = True
    for name, info in health["checks"].items():
        if name == "rate_limiter":
            available = info["primary_available"]
        elif name == "cache":
            available = info.get("durable_available", True)
        else:
            available = info["available"]
        all_ok = all_ok and available
        print(f"  {'✓' if available else '✗'} {name}: {'OK' if available else 'unavailable'}")

    print()
    print("All checks passed!" if all_ok else "Some checks failed. See above for details.")
    return 0 if all_ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docverify",
        description="DocVerify - tamper-evident document issuance and verification",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    hash_parser = subparsers.add_parser("hash", help="Fingerprint a file, string or JSON document")
    hash_parser.add_argument("path", nargs="?", help="File to hash")
    hash_parser.add_argument("--text", help="Hash this string (UTF-8)")
    hash_parser.add_argument("--json", help="Hash the canonical form of this JSON file")

    for name, help_text in (
        ("merkle-root", "Merkle root of a list of digests"),
        ("proof", "Inclusion proof for one digest"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("digests", nargs="*", help="Leaf digests in order")
        sub.add_argument("--file", help="File with one digest per line")
        if name == "proof":
            target = sub.add_mutually_exclusive_group(required=True)
            target.add_argument("--index", type=int, help="Leaf position")
            target.add_argument("--leaf", help="Leaf digest")

    subparsers.add_parser("check", help="Check configuration and collaborators")
    return parser


COMMANDS = {
    "serve": cmd_serve,
    "hash": cmd_hash,
    "merkle-root": cmd_merkle_root,
    "proof": cmd_proof,
    "check": cmd_check,
}


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
    sys.exit(command(args))


if __name__ == "__main__":
    main()
