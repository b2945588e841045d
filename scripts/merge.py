#!/usr/bin/env python3
"""
Replica Merge Tool

Reconciles tables between two diverged PostgreSQL nodes. See
src/merge/cli.py for commands and exit codes.

Usage:
    ./scripts/merge.py --config merge.yml analyze --tables users,orders
    ./scripts/merge.py --config merge.yml merge --tables users,orders --dry-run
    ./scripts/merge.py status
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.merge.cli import main


if __name__ == "__main__":
    sys.exit(main())
