# Seed data: Grievances covering every lifecycle status
#
# Coverage matrix:
#   Statuses : Pending (4), Overdue (2), PendingVerification (2),
#              Verified (1), Disputed (2)
#   Timers   : accept_by on all; resolve_by set on 5; verification
#              deadline only on PendingVerification (kept on Verified)
#   Special  : one record at the dispute threshold, one whose
#              verification window lapses on the next sweep

from datetime import timedelta

from lifecycle.config import new_id, now_utc

# ---------------------------------------------------------------------------
# Grievance records. Offsets are relative to import time:
#   age             -> created this long ago
#   resolve_in      -> resolve_by = now + resolve_in (negative = lapsed)
#   verify_in       -> verification_deadline = now + verify_in
# ---------------------------------------------------------------------------
GRIEVANCES = [
    # ======================================================================
    # PENDING (4)
    # ======================================================================
    {"title": "Pothole on the village main road",
     "description": "Large pothole near the primary school gate. Two bikes have fallen this week.",
     "media_url": "https://example.org/evidence/pothole-school-gate.jpg",
     "status": "Pending", "age": timedelta(hours=2)},

    {"title": "Street light not working",
     "description": "The street light at the bus stand has been off for five nights.",
     "status": "Pending", "age": timedelta(hours=6), "resolve_in": timedelta(days=4)},

    {"title": "Hand pump leaking",
     "description": "The hand pump behind the community hall leaks and the area is waterlogged.",
     "status": "Pending", "age": timedelta(hours=20), "resolve_in": timedelta(days=10)},

    # 4 - acceptance window lapses before the next sweep
    {"title": "Drain blocked near market",
     "description": "Sewage overflows onto the market road whenever it rains.",
     "status": "Pending", "age": timedelta(hours=23, minutes=59)},

    # ======================================================================
    # OVERDUE (2)
    # ======================================================================
    {"title": "Garbage not collected for two weeks",
     "description": "No pickup in ward 7 since the start of the month.",
     "status": "Overdue", "age": timedelta(days=3)},

    {"title": "Broken culvert on farm road",
     "description": "Tractors cannot cross the culvert; harvest transport is blocked.",
     "status": "Overdue", "age": timedelta(days=12), "resolve_in": timedelta(days=-2)},

    # ======================================================================
    # PENDING VERIFICATION (2)
    # ======================================================================
    {"title": "Water tank cleaning overdue",
     "description": "The overhead tank has not been cleaned in a year; water smells.",
     "status": "PendingVerification", "age": timedelta(days=5),
     "resolve_in": timedelta(days=2), "verify_in": timedelta(days=6)},

    # 8 - verification window lapses on the next sweep
    {"title": "School boundary wall collapsed",
     "description": "Part of the boundary wall fell during the storm and has not been rebuilt.",
     "status": "PendingVerification", "age": timedelta(days=14),
     "verify_in": timedelta(minutes=-5)},

    # ======================================================================
    # VERIFIED (1)
    # ======================================================================
    {"title": "Ration shop closed on working days",
     "description": "The fair price shop stayed shut for a full week without notice.",
     "status": "Verified", "age": timedelta(days=20), "resolve_in": timedelta(days=-8),
     "verify_in": timedelta(days=-3)},

    # ======================================================================
    # DISPUTED (2)
    # ======================================================================
    {"title": "Public toilet unusable",
     "description": "Resolved on paper but the doors are still broken and there is no water.",
     "status": "Disputed", "age": timedelta(days=9), "dispute_count": 1},

    # 11 - at the dispute threshold: resolve is forbidden
    {"title": "Pension payments stopped",
     "description": "Three elderly residents have not received pension for two months.",
     "status": "Disputed", "age": timedelta(days=25), "dispute_count": 2},
]


def build_grievances(now=None) -> list[dict]:
    """Turn the seed table into stored documents anchored at *now*."""
    now = now or now_utc()
    docs = []
    for g in GRIEVANCES:
        created = now - g["age"]
        doc = {
            "_id": new_id(),
            "title": g["title"], "description": g["description"],
            "media_url": g.get("media_url"),
            "status": g["status"],
            "accept_by": created + timedelta(hours=24),
            "resolve_by": now + g["resolve_in"] if "resolve_in" in g else None,
            "verification_deadline": now + g["verify_in"] if "verify_in" in g else None,
            "dispute_count": g.get("dispute_count", 0),
            "version": 0,
            "created_at": created,
            "updated_at": now - min(g["age"], timedelta(hours=1)),
        }
        docs.append(doc)
    return docs


def import_grievances(store) -> list[dict]:
    """Insert all seed grievances. Returns the inserted docs."""
    print("\n  Importing grievances...")
    docs = build_grievances()
    for doc in docs:
        store.insert(doc)
        print(f"    {doc['status']:<20} {doc['title']}")
    print(f"  => {len(docs)} grievances")
    return docs
