"""
Scholarship records: REST API first, local storage as the fallback.

When no API base is configured, or the API call fails for any reason, the
same operation runs against the "scholarships_local" key instead. Partner
submissions saved before the API existed live under three older keys and are
read through load_local_scholarships().
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from adapters.base import ApiAdapter
from config import SCHOLARSHIPS_LOCAL_KEY
from models.post import now_ms, to_millis
from storage.database import LocalStore

logger = logging.getLogger(__name__)

SCHOLARSHIPS_PATH = "/api/scholarships"
LEGACY_KEYS = ["partnerScholarships", "scholarships", "postedScholarships"]
SEARCH_FIELDS = ["title", "provider", "country", "level", "field"]


def _first(record: dict, *names, default=""):
    for name in names:
        value = record.get(name)
        if value:
            return value
    return default


def normalize_scholarship(record: dict) -> Dict[str, Any]:
    """Map the field aliases older submissions used onto one shape."""
    funding = record.get("fundingType")
    if not isinstance(funding, list):
        funding = [funding] if funding else []

    return {
        "id": _first(record, "id", "scholarshipId", default=f"sch_{uuid.uuid4().hex[:10]}"),
        "title": _first(record, "title", "name", default="Untitled Scholarship"),
        "deadline": _first(record, "deadline", "closeDate", "dueDate"),
        "createdAt": to_millis(_first(record, "createdAt", "postedAt", "created", "timestamp", default=0)) or now_ms(),
        "status": str(_first(record, "status", default="Open")),
        "partnerId": _first(record, "partnerId", "ownerId", "postedById"),
        "postedByEmail": _first(record, "postedByEmail", "email", "partnerEmail"),
        "orgName": _first(record, "orgName", "organization", "university", "provider"),
        "description": _first(record, "description", "summary"),
        "amount": _first(record, "amount", "value"),
        "link": _first(record, "link", "applyLink", "url"),
        "provider": _first(record, "provider", "orgName", "organization", "university"),
        "country": record.get("country") or "",
        "level": record.get("level") or "",
        "field": record.get("field") or "",
        "fundingType": funding,
        "partnerApplyUrl": record.get("partnerApplyUrl") or "",
        "eligibility": record.get("eligibility") or "",
        "benefits": record.get("benefits") or "",
        "howToApply": record.get("howToApply") or "",
        "imageUrl": (record.get("imageUrl") or "").strip(),
        "imageData": record.get("imageData") or "",
    }


def load_local_scholarships(local: LocalStore) -> List[Dict[str, Any]]:
    """
    Every partner-submitted scholarship kept in local storage.

    Returns:
        Normalized records, in key order then list order
    """
    records = []
    for key in LEGACY_KEYS:
        items = local.get_json(key, [])
        if not isinstance(items, list):
            logger.warning(f"{key!r} is not a list, skipping")
            continue
        records.extend(normalize_scholarship(s) for s in items if isinstance(s, dict))
    return records


def _recency(record: dict) -> int:
    return to_millis(record.get("createdAt")) or to_millis(record.get("id"))


class ScholarshipClient:
    """
    Attributes:
        local: LocalStore holding the fallback collection
        api: ApiAdapter for the REST endpoints
    """

    def __init__(self, local: LocalStore, base_url: Optional[str] = None, api: Optional[ApiAdapter] = None):
        self.local = local
        self.api = api or ApiAdapter(base_url=base_url)

    # ------------------------------------------------------------------
    # Local collection
    # ------------------------------------------------------------------

    def _read_local(self) -> List[dict]:
        items = self.local.get_json(SCHOLARSHIPS_LOCAL_KEY, [])
        return [s for s in items if isinstance(s, dict)] if isinstance(items, list) else []

    def _write_local(self, items: List[dict]):
        self.local.set_json(SCHOLARSHIPS_LOCAL_KEY, items)

    def _fallback(self, operation: str, result: Dict[str, Any]):
        logger.warning(
            f"Scholarship API {operation} failed "
            f"(status {result.get('status')}: {result.get('error', '')}), using local storage"
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list(self, q: str = "", status: str = "all", page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        """
        One page of scholarships matching a query and status.

        Args:
            q: Case-insensitive text over title, provider, country, level, field
            status: Exact status, or "all"
            page: 1-based page number
            page_size: Items per page

        Returns:
            {"items": [...], "total": int}
        """
        if self.api.configured:
            result = self.api.get_json(SCHOLARSHIPS_PATH, params={
                "q": q,
                "status": status,
                "page": str(page),
                "pageSize": str(page_size),
            })
            if result["ok"] and isinstance(result.get("items"), list):
                return {"items": result["items"], "total": result.get("total", len(result["items"]))}
            self._fallback("list", result)

        items = self._read_local()
        needle = (q or "").strip().lower()
        if needle:
            items = [
                s for s in items
                if any(needle in str(s.get(f)).lower() for f in SEARCH_FIELDS if s.get(f))
            ]
        if status and status != "all":
            items = [s for s in items if str(s.get("status") or "pending").lower() == status.lower()]

        items.sort(key=_recency, reverse=True)
        start = (max(page, 1) - 1) * page_size
        return {"items": items[start:start + page_size], "total": len(items)}

    def update(self, scholarship_id, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            KeyError: In local mode, when no record has that id
        """
        if self.api.configured:
            result = self.api.put_json(f"{SCHOLARSHIPS_PATH}/{scholarship_id}", patch)
            if result["ok"]:
                result.pop("ok", None)
                result.pop("status", None)
                return result
            self._fallback("update", result)

        items = self._read_local()
        for idx, record in enumerate(items):
            if str(record.get("id")) == str(scholarship_id):
                items[idx] = {**record, **patch}
                self._write_local(items)
                return items[idx]
        raise KeyError(f"Scholarship {scholarship_id} not found in local storage")

    def delete(self, scholarship_id) -> Dict[str, Any]:
        if self.api.configured:
            result = self.api.delete(f"{SCHOLARSHIPS_PATH}/{scholarship_id}")
            if result["ok"]:
                return {"ok": True}
            self._fallback("delete", result)

        items = [s for s in self._read_local() if str(s.get("id")) != str(scholarship_id)]
        self._write_local(items)
        return {"ok": True}

    def create_local(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Store a record locally, stamping createdAt and an id when missing."""
        record = dict(data)
        record["createdAt"] = record.get("createdAt") or now_ms()
        if record.get("id") in (None, ""):
            record["id"] = now_ms()
        items = self._read_local()
        items.append(record)
        self._write_local(items)
        return record
