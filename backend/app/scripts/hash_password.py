from __future__ import annotations

import argparse
import getpass
import sys

from backend.app.services.auth_service import BCRYPT_ROUNDS, hash_password


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a bcrypt hash for ATHAN_NOTES_APP_PASSWORD_HASH.",
    )
    parser.add_argument(
        "password",
        nargs="?",
        help="Password to hash. Prompted for (without echo) when omitted.",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=BCRYPT_ROUNDS,
        help=f"bcrypt cost factor (default: {BCRYPT_ROUNDS}).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    password: str | None = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("Passwords do not match.", file=sys.stderr)
            return 1

    try:
        password_hash = hash_password(password, rounds=args.rounds)
    except ValueError as exc:
        print(f"Cannot hash password: {exc}", file=sys.stderr)
        return 1

    print(password_hash)
    print("\nAdd to .env (the $ signs are escaped for shell-style env files):", file=sys.stderr)
    escaped_hash = password_hash.replace("$", "\\$")
    print(f"ATHAN_NOTES_APP_PASSWORD_HASH={escaped_hash}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
