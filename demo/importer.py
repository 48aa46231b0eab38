# Grievance Lifecycle Service - Seed Data Importer
# Resets the grievances collection in MongoDB and loads demo records
#
# Usage:  python demo/importer.py      (from repo root)
#     or: python importer.py           (from demo/)

import sys
from pathlib import Path

# Ensure the demo package is importable when running from repo root
_demo_dir = Path(__file__).resolve().parent
if str(_demo_dir) not in sys.path:
    sys.path.insert(0, str(_demo_dir))

from lifecycle.config import MONGODB_URL, MONGODB_DB
from lifecycle.store import MongoGrievanceStore
from seed.grievances import import_grievances


def main():
    print("=" * 64)
    print("  Grievance Lifecycle Service - Data Importer")
    print("=" * 64)

    # ------------------------------------------------------------------
    # 1. Connect MongoDB
    # ------------------------------------------------------------------
    print("\n[1/3] Connecting to MongoDB...")
    store = MongoGrievanceStore.connect(MONGODB_URL, MONGODB_DB)
    print(f"  Connected: {MONGODB_URL} ({MONGODB_DB})")

    # ------------------------------------------------------------------
    # 2. Reset collection
    # ------------------------------------------------------------------
    print("\n[2/3] Resetting collection...")
    store.collection.drop()
    store.create_indexes()
    print("  MongoDB: grievances")

    # ------------------------------------------------------------------
    # 3. Seed grievances
    # ------------------------------------------------------------------
    print("\n[3/3] Grievances")
    inserted = import_grievances(store)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    counts: dict[str, int] = {}
    for doc in inserted:
        counts[doc["status"]] = counts.get(doc["status"], 0) + 1
    print("\n" + "=" * 64)
    print("  IMPORT COMPLETE")
    print("=" * 64)
    for status_name, n in sorted(counts.items()):
        print(f"  {status_name + ':':<22}{n}")
    print(f"  {'Total:':<22}{len(inserted)}")
    print("=" * 64)
    store.close()


if __name__ == "__main__":
    main()
