"""
Module entry point for running mailclean from the src directory.

Usage:
    python src labels                     # Count messages per label
    python src senders TERM               # Group search hits by sender
    python src subscriptions YEAR         # Subscription senders of a year
    python src delete DIMENSION ID        # Delete a cached group
"""

from __future__ import annotations
from cli import main

if __name__ == "__main__":
    main()
