"""
RothPilot - Calculation Audit Log
=================================
Input fingerprints for projection caching and a best-effort record of every
calculation the service runs.

The engine never calls into this module; only the API layer does.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models import ClientProfile

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.0.0"

# Display-only fields that never change a projection
NON_COMPUTATIONAL_FIELDS = {"client_name"}


def fingerprint_profile(profile: ClientProfile, start_year: int, end_year: int) -> str:
    """SHA-256 over the sorted JSON of computation-relevant inputs plus the horizon."""
    payload: Dict[str, Any] = profile.model_dump(mode="json", exclude=NON_COMPUTATIONAL_FIELDS)
    payload["_horizon"] = [start_year, end_year]
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class AuditEntry(BaseModel):
    advisor_id: str
    input_hash: str
    strategy: str
    break_even_age: Optional[int] = None
    total_tax_savings: int
    baseline_final_wealth: int
    strategy_final_wealth: int
    calculation_ms: int
    engine_version: str = ENGINE_VERSION
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog:
    """
    In-memory audit store (replace with a database table in production).
    Writes never raise: a failed audit must not cost the caller its result.
    """

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def _store(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def log_calculation(self, **fields) -> bool:
        try:
            self._store(AuditEntry(**fields))
            return True
        except Exception as e:
            logger.warning(f"[Audit] Failed to log calculation: {e}")
            return False

    def history(self, advisor_id: str, limit: int = 10) -> List[AuditEntry]:
        matching = [e for e in self.entries if e.advisor_id == advisor_id]
        return list(reversed(matching))[:limit]
