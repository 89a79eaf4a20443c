from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any

from tls_trust_check.verification import CheckResult


def result_record(result: CheckResult) -> dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(),
        "host": result.endpoint.host,
        "port": result.endpoint.port,
        "success": result.success,
        "stages": [
            {
                "stage": s.stage,
                "status": s.status,
                "summary": s.summary,
                "error": s.error,
                "diagnostic": s.diagnostic,
            }
            for s in result.stages
        ],
        "bad_certificates": [{"path": r.path, "error": r.error} for r in result.bad_certificates],
    }


def write_json_report(path: str, result: CheckResult) -> None:
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result_record(result), f, ensure_ascii=False, indent=2)
        f.write("\n")
