"""
Test script for the daily sync run log.

Run this script to test SyncLogger:
    python test_sync_log.py
"""

import sys
import tempfile
from datetime import date
from pathlib import Path

# Add the project root to the path so we can import the module
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from employee_sync.models import SyncReport
from employee_sync.sync_log import SyncLogger


def test_record_writes_summary_and_errors():
    print("\n=== Test 1: summary + errors ===")
    log_dir = Path(tempfile.mkdtemp())
    report = SyncReport(timestamp="2025-03-01T02:00:00+00:00")
    report.added = 2
    report.add_error("Failed to update E7: timeout")

    SyncLogger(log_dir).record(report, trigger="scheduled")

    today = date.today()
    log_file = log_dir / "sync" / str(today.year) / f"{today.month:02d}" / f"sync_{today.isoformat()}.log"
    content = log_file.read_text(encoding="utf-8")
    print(content)
    assert "[FAILED] trigger=scheduled started=2025-03-01T02:00:00+00:00 added=2" in content
    assert "error: Failed to update E7: timeout" in content
    print("✅ Test 1 passed!")


def test_rotates_on_date_change():
    print("\n=== Test 2: daily rotation ===")
    log_dir = Path(tempfile.mkdtemp())
    sync_logger = SyncLogger(log_dir)

    first = sync_logger.get(date(2025, 1, 31))
    first.info("january")
    second = sync_logger.get(date(2025, 2, 1))
    second.info("february")

    january = log_dir / "sync" / "2025" / "01" / "sync_2025-01-31.log"
    february = log_dir / "sync" / "2025" / "02" / "sync_2025-02-01.log"
    assert "january" in january.read_text(encoding="utf-8")
    assert "february" in february.read_text(encoding="utf-8")
    assert "february" not in january.read_text(encoding="utf-8")
    assert len(second.handlers) == 1
    print("✅ Test 2 passed!")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing SyncLogger")
    print("=" * 60)

    try:
        test_record_writes_summary_and_errors()
        test_rotates_on_date_change()

        print("\n" + "=" * 60)
        print("✅ All tests passed!")
        print("=" * 60)
    except Exception as e:
        print("\n" + "=" * 60)
        print(f"❌ Test failed with error: {e}")
        import traceback
        traceback.print_exc()
        print("=" * 60)
        sys.exit(1)
