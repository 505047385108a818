"""
Module entry point for running Mail Relay as a Python module.

Usage:
    python -m mail_relay run      # Forward on a fixed delay until interrupted
    python -m mail_relay once     # Run a single forwarding tick
    python -m mail_relay check    # Check account connectivity
"""

from mail_relay.cli import main

if __name__ == "__main__":
    main()
