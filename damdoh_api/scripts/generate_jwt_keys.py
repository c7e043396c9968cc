#!/usr/bin/env python3
"""
Print an RS256 key pair for JWT signing as environment variables.

Configured keys keep tokens valid across restarts; without them every
process generates its own development pair.
"""

from damdoh_api.services.auth import generate_key_pair


def main():
    private_key, public_key = generate_key_pair()

    newline = "\\n"
    print(f'JWT_PRIVATE_KEY="{private_key.replace(chr(10), newline)}"')
    print(f'JWT_PUBLIC_KEY="{public_key.replace(chr(10), newline)}"')


if __name__ == "__main__":
    main()
