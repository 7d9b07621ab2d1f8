#!/usr/bin/env python3
"""Delete bearer tokens that outlived the session TTL.

Expired tokens are already rejected and removed when presented; this sweep
clears the ones nobody presents again. Intended for cron.

Usage:
    STATE_ROOT=/var/lib/lessonhub python scripts/purge_expired_tokens.py
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main():
    parser = argparse.ArgumentParser(
        description="Purge expired LessonHub bearer tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.parse_args()

    from lessonhub.service.runtime import get_runtime

    try:
        purged = get_runtime().tokens.purge_expired()
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Purged {purged} expired token(s)")


if __name__ == "__main__":
    main()
