from __future__ import annotations

import argparse
import secrets
import sys

from backend.app.config import MIN_SESSION_SECRET_LENGTH

DEFAULT_SECRET_BYTES = 32


def generate_session_secret(num_bytes: int = DEFAULT_SECRET_BYTES) -> str:
    secret = secrets.token_urlsafe(num_bytes)
    if len(secret) < MIN_SESSION_SECRET_LENGTH:
        raise ValueError(
            f"{num_bytes} bytes yields a secret shorter than {MIN_SESSION_SECRET_LENGTH} characters"
        )
    return secret


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate a random value for ATHAN_NOTES_SESSION_SECRET.",
    )
    parser.add_argument(
        "--bytes",
        dest="num_bytes",
        type=int,
        default=DEFAULT_SECRET_BYTES,
        help=f"Random bytes to encode (default: {DEFAULT_SECRET_BYTES}).",
    )
    args = parser.parse_args(argv)
    try:
        secret = generate_session_secret(args.num_bytes)
    except ValueError as exc:
        print(f"Cannot generate secret: {exc}", file=sys.stderr)
        return 1
    print(f"ATHAN_NOTES_SESSION_SECRET={secret}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
