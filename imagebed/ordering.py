"""
Display ordering of images.

Images are bucketed into three groups by upload time (today, this week,
older). Each group keeps its own ordered list of keys, which the admin
rearranges by drag and drop and which is persisted by the order store.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from imagebed.models import ORDER_CAP, ImageRecord

GROUPS = ("today", "week", "older")


def empty_groups() -> Dict[str, List[str]]:
    return {group: [] for group in GROUPS}


def normalize_order(order: Sequence[str]) -> List[str]:
    """
    Trims entries, drops blanks and duplicates (first wins), caps the length.
    Anything but a list of keys reads as an empty order.
    """
    if not isinstance(order, (list, tuple)):
        return []
    seen = set()
    result = []
    for value in order:
        if not isinstance(value, str):
            continue
        key = value.strip()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(key)
        if len(result) == ORDER_CAP:
            break
    return result


def normalize_groups(groups: Optional[Mapping[str, Iterable[str]]]) -> Dict[str, List[str]]:
    if not isinstance(groups, Mapping):
        groups = {}
    return {group: normalize_order(groups.get(group)) for group in GROUPS}


def groups_from_document(document: Mapping) -> Dict[str, List[str]]:
    """
    Reads the groups out of a stored order document.

    Documents written before grouping existed hold a single flat "order"
    list; those entries all land in "older".
    """
    if "groups" in document:
        return normalize_groups(document.get("groups"))
    groups = empty_groups()
    groups["older"] = normalize_order(document.get("order"))
    return groups


def group_for(uploaded_at: datetime, now: datetime) -> str:
    if uploaded_at.tzinfo is not None and now.tzinfo is not None:
        uploaded_at = uploaded_at.astimezone(now.tzinfo)
    if uploaded_at.date() == now.date():
        return "today"
    if uploaded_at.isocalendar()[:2] == now.isocalendar()[:2]:
        return "week"
    return "older"


def merge_order(prior: Sequence[str], current: Sequence[str]) -> List[str]:
    """
    Reconciles a saved order with the keys currently listed.

    Saved keys still listed keep their relative order, listed keys the
    saved order has never seen are appended in listing order. Saved keys
    that are no longer listed are left out.
    """
    current_set = set(current)
    kept = [key for key in prior if key in current_set]
    kept_set = set(kept)
    return kept + [key for key in current if key not in kept_set]


def merge_groups(
    saved: Mapping[str, Sequence[str]],
    records: Sequence[ImageRecord],
    now: datetime,
) -> Dict[str, List[ImageRecord]]:
    """Buckets records by upload time and orders each bucket by the saved order."""
    buckets: Dict[str, List[ImageRecord]] = {group: [] for group in GROUPS}
    for record in records:
        buckets[group_for(datetime.fromisoformat(record.uploaded_at), now)].append(record)

    arranged = {}
    for group in GROUPS:
        by_key = {record.key: record for record in buckets[group]}
        order = merge_order(saved.get(group, []), [record.key for record in buckets[group]])
        arranged[group] = [by_key[key] for key in order]
    return arranged


def prune_groups(groups: Mapping[str, Sequence[str]], keys: Iterable[str]) -> Dict[str, List[str]]:
    removed = set(keys)
    return {group: [key for key in groups.get(group, []) if key not in removed] for group in GROUPS}


def move_key(order: Sequence[str], key: str, target: str) -> List[str]:
    """Moves `key` to the position currently held by `target`."""
    result = list(order)
    if key not in result or target not in result or key == target:
        return result
    to = result.index(target)
    result.remove(key)
    result.insert(to, key)
    return result
