#!/usr/bin/env python3
"""Run the queue maintenance sweeps once (for cron hosts without HTTP access)."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from boostqueue import create_app
from boostqueue.clock import get_clock
from boostqueue.maintenance import run_maintenance
from boostqueue.notifications import dispatch_pending

def main():
    app = create_app()
    with app.app_context():
        now = get_clock().now()
        counts = run_maintenance(now)
        delivered = dispatch_pending(now)
        print(f"✅ Moved {counts['moved_to_review']} to review, archived {counts['archived']}, "
              f"sent {delivered} notification(s)")

if __name__ == "__main__":
    main()
