"""
Response Bounding
-----------------
Keeps every payload returned to the caller within configured size ceilings.

Two strategies:
- Structural bounding walks the payload and caps every sequence and every
  string, at every depth, independently.
- Cardinality summarization replaces a large list-shaped response with its
  first few items plus per-field facet summaries.

A payload (or sub-payload) that already carries bounding or summary
metadata is returned unchanged, so bounding is idempotent.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import json
import logging


TRUNCATION_MARKER = "... [truncated]"
META_KEY = "_meta"

# Operation-name substring -> facet fields, first match wins
FACET_FIELDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("clients", ("description", "mac", "ip", "vlan", "status")),
    ("devices", ("name", "model", "serial", "status", "productType")),
    ("events", ("type", "category", "occurredAt", "description")),
    ("networks", ("name", "id", "productTypes", "timeZone")),
    ("licenses", ("licenseType", "state", "expirationDate")),
)
DEFAULT_FACET_FIELDS: Tuple[str, ...] = ("name", "id", "type", "status")


@dataclass(frozen=True)
class BoundingLimits:
    """Ceilings applied to every response."""
    max_array_length: int = 50
    max_string_length: int = 1000
    truncate_long_strings: bool = True
    remove_null_fields: bool = True
    summarize_arrays: bool = True
    max_response_size: int = 30000   # Serialized characters
    max_summary_items: int = 500
    summary_item_count: int = 5
    facet_sample_size: int = 5

    @classmethod
    def from_settings(cls, limits) -> "BoundingLimits":
        """Build from the `responseLimits` settings section."""
        return cls(
            max_array_length=limits.max_array_length,
            max_string_length=limits.max_string_length,
            truncate_long_strings=limits.truncate_long_strings,
            remove_null_fields=limits.remove_null_fields,
            summarize_arrays=limits.summarize_arrays,
            max_response_size=limits.max_response_size,
            max_summary_items=limits.max_summary_items,
            summary_item_count=limits.summary_item_count,
            facet_sample_size=limits.facet_sample_size,
        )


def is_bounded(data: Any) -> bool:
    """True if `data` already carries bounding or summary metadata."""
    if not isinstance(data, dict):
        return False
    meta = data.get(META_KEY)
    if isinstance(meta, dict) and meta.get("truncated") is True and "totalCount" in meta:
        return True
    return "totalCount" in data and "firstItems" in data and "facetSummaries" in data


def facet_fields_for(tool_name: str) -> Tuple[str, ...]:
    """Facet fields for an operation, chosen by substring of its name."""
    for needle, fields in FACET_FIELDS:
        if needle in tool_name:
            return fields
    return DEFAULT_FACET_FIELDS


def serialized_size(data: Any) -> int:
    """Length of the compact JSON encoding."""
    return len(json.dumps(data, separators=(",", ":"), default=str))


class ResponseBounder:
    """
    Applies BoundingLimits to response payloads.

    Stateless apart from its limits; safe to share across concurrent calls.
    """

    def __init__(self, limits: Optional[BoundingLimits] = None):
        self.limits = limits or BoundingLimits()
        self._logger = logging.getLogger("meraki.core.bounding")

    def bound(self, data: Any, tool_name: str = "") -> Any:
        """
        Bound a full response.

        Large list-shaped responses are summarized; everything else is
        bounded structurally.
        """
        if is_bounded(data):
            return data

        if self.limits.summarize_arrays:
            if isinstance(data, list):
                truncated = self.truncate(data)
                if not self._needs_summary(data, truncated):
                    return truncated
                self._logger.info(
                    f"[{tool_name or 'response'}] Large response ({len(data)} items), creating summary"
                )
                return self.summarize(data, tool_name)

            if isinstance(data, dict):
                return self._bound_object(data, tool_name, summarize_lists=True)

        return self.truncate(data)

    def truncate(self, data: Any) -> Any:
        """Structural bounding only, applied recursively."""
        if data is None or is_bounded(data):
            return data

        if isinstance(data, list):
            limit = self.limits.max_array_length
            items = [self.truncate(item) for item in data[:limit]]
            if len(data) > limit:
                return {
                    "data": items,
                    META_KEY: {
                        "totalCount": len(data),
                        "returnedCount": len(items),
                        "truncated": True,
                    },
                }
            return items

        if isinstance(data, dict):
            return self._bound_object(data, "", summarize_lists=False)

        if isinstance(data, str):
            return self._truncate_string(data)

        return data

    def summarize(self, items: Sequence[Any], tool_name: str = "") -> Dict[str, Any]:
        """
        Replace a list with its head and per-field cardinality summaries.

        Facet values are compared by their JSON encoding, so unhashable
        values (lists, objects) are summarized too.
        """
        facets: Dict[str, Dict[str, Any]] = {}
        for field_name in facet_fields_for(tool_name):
            seen: Dict[str, Any] = {}
            for item in items:
                if not isinstance(item, dict):
                    continue
                value = item.get(field_name)
                if value is None:
                    continue
                key = json.dumps(value, sort_keys=True, default=str)
                if key not in seen:
                    seen[key] = value
            if seen:
                facets[field_name] = {
                    "uniqueCount": len(seen),
                    "samples": [
                        self.truncate(v) for v in list(seen.values())[:self.limits.facet_sample_size]
                    ],
                }

        head = list(items[:self.limits.summary_item_count])
        return {
            "totalCount": len(items),
            "firstItems": [self.truncate(item) for item in head],
            "facetSummaries": facets,
        }

    def _needs_summary(self, items: List[Any], truncated: Any) -> bool:
        """Decide on the bounded form, which can outgrow the raw list."""
        if len(items) > self.limits.max_summary_items:
            return True
        # A summary of this few items would not be any smaller
        if len(items) <= self.limits.summary_item_count:
            return False
        return serialized_size(truncated) > self.limits.max_response_size

    def _bound_object(self, data: Dict[str, Any], tool_name: str, summarize_lists: bool) -> Dict[str, Any]:
        if is_bounded(data):
            return data

        bounded: Dict[str, Any] = {}
        for key, value in data.items():
            if value is None and self.limits.remove_null_fields:
                continue
            truncated = self.truncate(value)
            if summarize_lists and isinstance(value, list) and self._needs_summary(value, truncated):
                self._logger.info(
                    f"[{tool_name or 'response'}] Large '{key}' list ({len(value)} items), creating summary"
                )
                bounded[key] = self.summarize(value, tool_name)
            else:
                bounded[key] = truncated
        return bounded

    def _truncate_string(self, value: str) -> str:
        limit = self.limits.max_string_length
        if not self.limits.truncate_long_strings or len(value) <= limit:
            return value
        # Content plus marker fits the ceiling exactly
        return value[:limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
