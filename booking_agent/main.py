"""Terminal chat with the booking agent, for development.

Messages go through the same session manager as the HTTP API, so the
transcript is stored and reloaded exactly as in production.

Usage:
    python -m booking_agent.main --tenant <tenant-id> --client <phone>
    python -m booking_agent.main --tenant <tenant-id> --client <phone> --debug
"""

from __future__ import annotations

import argparse
import logging

from booking_agent.config import DATABASE_URL
from booking_agent.services.database import create_db_engine, init_db
from booking_agent.session import build_runtime

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("booking_agent").setLevel(logging.DEBUG if debug else logging.INFO)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Booking agent CLI chat")
    parser.add_argument("--tenant", required=True, help="Tenant id to talk to")
    parser.add_argument("--client", required=True, help="Client identifier (e.g. phone number)")
    parser.add_argument("--database-url", default=DATABASE_URL, help="SQLAlchemy database URL")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args(argv)
    _configure_logging(debug=args.debug)

    engine = create_db_engine(args.database_url)
    init_db(engine)
    runtime = build_runtime(engine)

    print("\n" + "=" * 60)
    print(f"  Booking agent - tenant {args.tenant}, client {args.client}")
    print("=" * 60)
    print("  Type your message and press Enter. 'quit' to exit.")
    print("=" * 60 + "\n")

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            reply = runtime.sessions.handle_message(args.tenant, args.client, user_input)
            if reply is None:
                print("\n(agent is disabled for this tenant; no reply)\n")
            else:
                print(f"\nAgent: {reply}\n")
    finally:
        runtime.close()
        engine.dispose()


if __name__ == "__main__":
    main()
