"""CLI for running the receiver and signing local test events.

Usage:
    python -m paywebhooks.cli serve --port 3000
    python -m paywebhooks.cli sign-event event.json --secret whsec_...
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from paywebhooks.config import get_settings
from paywebhooks.verification import build_signature_header


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the webhook receiver under uvicorn."""
    import uvicorn

    from paywebhooks.app import configure_logging, create_app

    settings = get_settings()
    configure_logging(settings.log_level)
    port = args.port or settings.port
    uvicorn.run(create_app(settings), host=args.host, port=port)


def cmd_sign_event(args: argparse.Namespace) -> None:
    """Print a Stripe-Signature header for an event file."""
    path = Path(args.event_file)
    if not path.exists():
        print(f"ERROR: event file not found: {path}", file=sys.stderr)
        sys.exit(1)

    secret = args.secret or get_settings().stripe_webhook_secret
    if not secret:
        print("ERROR: no secret (pass --secret or set STRIPE_WEBHOOK_SECRET)", file=sys.stderr)
        sys.exit(1)

    print(build_signature_header(path.read_bytes(), secret, args.timestamp))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="paywebhooks",
        description="Payment provider webhook receiver",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # serve
    p_serve = sub.add_parser("serve", help="Run the webhook receiver")
    p_serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: PORT or 3000)")
    p_serve.set_defaults(func=cmd_serve)

    # sign-event
    p_sign = sub.add_parser("sign-event", help="Print a Stripe-Signature header for a body")
    p_sign.add_argument("event_file", help="Path to the raw event JSON")
    p_sign.add_argument("--secret", help="Signing secret (default: STRIPE_WEBHOOK_SECRET)")
    p_sign.add_argument("--timestamp", type=int, default=None, help="Unix time (default: now)")
    p_sign.set_defaults(func=cmd_sign_event)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
