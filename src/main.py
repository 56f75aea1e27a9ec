"""CLI entry point for the UBLC Library assistant.

This provides a simple terminal-based chat interface for testing and
development. For production, use the FastAPI server (src/server.py).

Usage:
    uv run python -m src.main            # normal mode (quiet)
    uv run python -m src.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from src.agent import create_library_assistant

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="UBLC Library Assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  UBLC Library Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    assistant = create_library_assistant()
    session_id = None

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye! Happy reading!")
            break

        if user_input.lower() == "new":
            assistant.clear_session(session_id)
            session_id = None
            print("\n>> New session started.\n")
            continue

        turn = assistant.handle_turn(user_input, session_id=session_id)
        if turn.session_id and turn.session_id != session_id:
            logger.info("Session: %s", turn.session_id)
        session_id = turn.session_id
        print(f"\nLibrary: {turn.reply}\n")


if __name__ == "__main__":
    main()
