"""Entry point for the mailbridge package.

Usage::

    python -m mailbridge consumer   # poll the mailbox into Kafka
    python -m mailbridge check      # connect once and report
"""

from __future__ import annotations

import asyncio
import sys


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("consumer", "check"):
        print("Usage: python -m mailbridge <consumer|check>", file=sys.stderr)
        sys.exit(1)

    mode = sys.argv[1]

    if mode == "consumer":
        from .poller import run_consumer

        asyncio.run(run_consumer())

    elif mode == "check":
        from .poller import check_mailbox

        ok = asyncio.run(check_mailbox())
        sys.exit(0 if ok else 2)


if __name__ == "__main__":
    main()
