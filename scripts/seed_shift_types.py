#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from guardpost.db import SessionLocal
from guardpost.services.shift_catalog import list_shift_types, seed_default_shift_types


def run() -> dict[str, Any]:
    with SessionLocal() as db:
        created = seed_default_shift_types(db)
        catalog = list_shift_types(db)
        return {
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "created": [item.name for item in created],
            "shift_types": [
                {
                    "id": item.id,
                    "name": item.name,
                    "start_time": item.start_time.isoformat(),
                    "end_time": item.end_time.isoformat(),
                    "overnight": item.is_overnight,
                }
                for item in catalog
            ],
        }


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
