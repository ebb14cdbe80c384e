#!/usr/bin/env python3
"""
Generate the secrets linktrack needs in its environment.

Prints a Fernet key for encrypting visitor IPs and a master API key for the
link management endpoints.

Usage:
    python scripts/generate_key.py
    python scripts/generate_key.py --fernet-only
"""
import argparse
import secrets

from cryptography.fernet import Fernet


def build_env_lines(fernet_only: bool = False) -> list:
    """Environment lines with freshly generated secrets."""
    lines = [f"FERNET_KEY={Fernet.generate_key().decode()}"]
    if not fernet_only:
        lines.append(f"MASTER_API_KEY={secrets.token_urlsafe(32)}")
    return lines


def main():
    parser = argparse.ArgumentParser(description="Generate linktrack secrets")
    parser.add_argument('--fernet-only', action='store_true', help="Only print FERNET_KEY")
    args = parser.parse_args()

    print()
    print("Add these to your .env file:")
    print()
    for line in build_env_lines(args.fernet_only):
        print(line)
    print()
    print("Losing FERNET_KEY makes stored click IPs unreadable.")
    print()


if __name__ == '__main__':
    main()
