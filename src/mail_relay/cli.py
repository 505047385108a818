"""
Command-line interface for Mail Relay.
"""

from __future__ import annotations
import argparse
import sys

from mail_relay.service import main as run_service


def main(argv=None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="mail-relay",
        description="Mail Relay - forward new POP3 messages to a destination address over SMTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run      Forward on a fixed delay until interrupted
  %(prog)s once     Run a single forwarding tick
  %(prog)s check    Only check that every account can connect and log in
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    subparsers.add_parser("run", help="Run the relay service")
    subparsers.add_parser("once", help="Run a single forwarding tick")
    subparsers.add_parser("check", help="Check account connectivity")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(run_service(args.command))


if __name__ == "__main__":
    main()
