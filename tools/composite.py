"""
Composite Aggregation
---------------------
Fan-out helper for operations that query several child resources and merge
the results into one list.

Rules:
- All child calls go through the caller's client, so the shared rate
  ceiling still applies
- A failing child is skipped and logged, never fatal
- Merge order depends on child order and timestamps, never on completion
  order
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
import asyncio
import logging

from core.errors import GatewayError


logger = logging.getLogger("meraki.tools.composite")

ChildFetch = Callable[[Dict[str, Any]], Awaitable[List[Dict[str, Any]]]]
ChildTag = Callable[[Dict[str, Any]], Dict[str, Any]]


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Epoch seconds for an ISO-8601 string or a number, else None.

    Naive timestamps are read as UTC.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def sort_newest_first(items: List[Dict[str, Any]], timestamp_field: str) -> List[Dict[str, Any]]:
    """Stable sort by timestamp descending; unparseable timestamps go last."""
    def key(item):
        ts = parse_timestamp(item.get(timestamp_field))
        return (1, 0.0) if ts is None else (0, -ts)

    return sorted(items, key=key)


def _child_id(child: Dict[str, Any]) -> Any:
    return child.get("id", child.get("serial"))


async def aggregate_children(
    children: Sequence[Dict[str, Any]],
    fetch: ChildFetch,
    tag: ChildTag,
    timestamp_field: str = "occurredAt",
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Query every child concurrently and merge the surviving items.

    Returns `items`, `total`, `childrenQueried`, `childrenSucceeded` and
    `skippedChildren`; a `warning` is added when no child succeeded.
    """
    results = await asyncio.gather(
        *(fetch(child) for child in children),
        return_exceptions=True,
    )

    merged: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []

    for child, outcome in zip(children, results):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            kind = outcome.kind if isinstance(outcome, GatewayError) else "internal_error"
            message = outcome.message if isinstance(outcome, GatewayError) else str(outcome)
            logger.warning(f"Skipping child {_child_id(child)}: {kind}: {message}")
            skipped.append({"id": _child_id(child), "kind": kind, "message": message})
            continue

        context = tag(child)
        for item in outcome or []:
            if isinstance(item, dict):
                merged.append({**item, **context})

    merged = sort_newest_first(merged, timestamp_field)
    if page_size is not None:
        merged = merged[:page_size]

    succeeded = len(children) - len(skipped)
    aggregate: Dict[str, Any] = {
        "items": merged,
        "total": len(merged),
        "childrenQueried": len(children),
        "childrenSucceeded": succeeded,
        "skippedChildren": skipped,
    }
    if children and succeeded == 0:
        aggregate["warning"] = f"0 of {len(children)} children succeeded"
        logger.warning(aggregate["warning"])

    return aggregate
