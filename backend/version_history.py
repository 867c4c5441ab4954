"""
Report version history - snapshots, change summaries and comparisons.

A snapshot is a plain JSON document holding a report's title, description,
status and its sections in order. Snapshots are stored whole on every
version so any two can be compared or restored without replaying history.

`calculate_diff` produces the short change summary stored alongside a new
version; `compare_snapshots` produces the detailed side-by-side comparison,
with word diffs for metadata, line diffs for rich text, and keyed diffs for
statistics (by label) and map locations (by name).
"""

import re
import json
import hashlib
import difflib
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ChangeType(str, Enum):
    """How a version came to exist"""
    SAVE = "save"
    AUTO_SAVE = "auto_save"
    BACKUP = "backup_before_restore"
    RESTORE = "restored"


METADATA_FIELDS = ("title", "description", "status")
SECTION_FIELDS = ("title", "is_visible", "order")
LINE_DIFF_TYPES = ("TEXT", "RECOMMENDATIONS")

_WORD_RE = re.compile(r"\s+|\w+|[^\w\s]")


# ============================================================
# SNAPSHOTS
# ============================================================

def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def snapshot_section(section: Any) -> Dict[str, Any]:
    return {
        "id": section.id,
        "title": section.title,
        "type": _enum_value(section.type),
        "content": section.content or {},
        "order": section.order,
        "is_visible": bool(section.is_visible),
    }


def snapshot_report(report: Any, sections: Iterable[Any]) -> Dict[str, Any]:
    """Point-in-time copy of a report and all its sections, hidden ones included"""
    return {
        "title": report.title,
        "description": report.description,
        "status": _enum_value(report.status),
        "sections": [snapshot_section(s) for s in sorted(sections, key=lambda s: s.order)],
    }


def content_hash(data: Any) -> str:
    content_str = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(content_str.encode()).hexdigest()[:16]


def restored_sections(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Sections of a snapshot in stored order, renumbered densely from 0"""
    ordered = sorted(data.get("sections") or [], key=lambda s: s.get("order", 0))
    return [{**section, "order": i} for i, section in enumerate(ordered)]


# ============================================================
# CHANGE SUMMARY (stored with each version)
# ============================================================

def _same(a: Any, b: Any) -> bool:
    return json.dumps(a, sort_keys=True, default=str) == json.dumps(b, sort_keys=True, default=str)


def _field_changes(old: Dict[str, Any], new: Dict[str, Any]) -> List[Dict[str, Any]]:
    changes = []
    for key in list(old) + [k for k in new if k not in old]:
        if not _same(old.get(key), new.get(key)):
            changes.append({"field": key, "old_value": old.get(key), "new_value": new.get(key)})
    return changes


def calculate_diff(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """Sections added, modified and removed since `old`, plus changed metadata fields"""
    diff: Dict[str, List[Dict[str, Any]]] = {"added": [], "modified": [], "removed": []}
    old_sections = {s["id"]: s for s in old.get("sections") or []}
    new_sections = {s["id"]: s for s in new.get("sections") or []}

    for section_id, section in new_sections.items():
        previous = old_sections.get(section_id)
        if previous is None:
            diff["added"].append({"type": "section", "id": section_id, "title": section.get("title")})
        elif not _same(previous, section):
            diff["modified"].append({
                "type": "section",
                "id": section_id,
                "title": section.get("title"),
                "changes": _field_changes(previous, section),
            })

    for section_id, section in old_sections.items():
        if section_id not in new_sections:
            diff["removed"].append({"type": "section", "id": section_id, "title": section.get("title")})

    for name in METADATA_FIELDS:
        if old.get(name) != new.get(name):
            diff["modified"].append({
                "type": "metadata", "field": name, "old_value": old.get(name), "new_value": new.get(name),
            })
    return diff


# ============================================================
# TEXT DIFFS
# ============================================================

def _diff_parts(a: List[str], b: List[str], count_lines: bool = False) -> List[Dict[str, Any]]:
    parts: List[Dict[str, Any]] = []

    def emit(tokens: List[str], added: bool, removed: bool) -> None:
        if not tokens:
            return
        part: Dict[str, Any] = {"value": "".join(tokens), "added": added, "removed": removed}
        if count_lines:
            part["line_count"] = len(tokens)
        parts.append(part)

    matcher = difflib.SequenceMatcher(None, a, b, autojunk=False)
    for op, i1, i2, j1, j2 in matcher.get_opcodes():
        if op == "equal":
            emit(a[i1:i2], False, False)
        else:
            emit(a[i1:i2], False, True)
            emit(b[j1:j2], True, False)
    return parts


def word_diff(old: str, new: str) -> List[Dict[str, Any]]:
    return _diff_parts(_WORD_RE.findall(old), _WORD_RE.findall(new))


def line_diff(old: str, new: str) -> List[Dict[str, Any]]:
    return _diff_parts(old.splitlines(keepends=True), new.splitlines(keepends=True), count_lines=True)


# ============================================================
# KEYED COLLECTION DIFFS
# ============================================================

def _keyed_changes(old_items: List[Dict[str, Any]], new_items: List[Dict[str, Any]], key: str, modified) -> Dict[str, list]:
    old_map = {item.get(key): item for item in old_items}
    new_map = {item.get(key): item for item in new_items}
    changes: Dict[str, list] = {"added": [], "removed": [], "modified": []}
    for name, item in new_map.items():
        if name not in old_map:
            changes["added"].append(item)
    for name, item in old_map.items():
        if name not in new_map:
            changes["removed"].append(item)
        else:
            entry = modified(name, item, new_map[name])
            if entry is not None:
                changes["modified"].append(entry)
    return changes


def compare_statistics(old: List[Dict[str, Any]], new: List[Dict[str, Any]]) -> Dict[str, list]:
    def modified(label, a, b):
        if a.get("value") == b.get("value") and a.get("unit") == b.get("unit"):
            return None
        return {
            "label": label,
            "from": {"value": a.get("value"), "unit": a.get("unit")},
            "to": {"value": b.get("value"), "unit": b.get("unit")},
        }
    return _keyed_changes(old, new, "label", modified)


def compare_locations(old: List[Dict[str, Any]], new: List[Dict[str, Any]]) -> Dict[str, list]:
    def modified(name, a, b):
        return None if _same(a, b) else {"name": name, "from": a, "to": b}
    return _keyed_changes(old, new, "name", modified)


# ============================================================
# COMPARISON
# ============================================================

def _content_change(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    section_type = new.get("type")
    before, after = old.get("content") or {}, new.get("content") or {}
    change: Dict[str, Any] = {"field": "content", "type": section_type}

    if section_type in LINE_DIFF_TYPES and before.get("text") and after.get("text"):
        change["diff"] = line_diff(before["text"], after["text"])
    elif section_type == "STATISTICS":
        change["from"] = before.get("statistics") or []
        change["to"] = after.get("statistics") or []
        change["changes"] = compare_statistics(change["from"], change["to"])
    elif section_type == "CHART":
        change["from"], change["to"] = before.get("chart"), after.get("chart")
    elif section_type == "MAP":
        change["from"], change["to"] = before.get("map"), after.get("map")
        change["changes"] = compare_locations(
            (before.get("map") or {}).get("locations") or [],
            (after.get("map") or {}).get("locations") or [],
        )
    else:
        change["from"], change["to"] = before, after
    return change


def compare_sections(old: Dict[str, Any], new: Dict[str, Any]) -> List[Dict[str, Any]]:
    changes = [
        {"field": name, "from": old.get(name), "to": new.get(name)}
        for name in SECTION_FIELDS
        if old.get(name) != new.get(name)
    ]
    if not _same(old.get("content"), new.get("content")):
        changes.append(_content_change(old, new))
    return changes


def compare_snapshots(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """Detailed comparison of two snapshots; sections are matched by id"""
    metadata_changes = []
    for name in METADATA_FIELDS:
        if old.get(name) != new.get(name):
            metadata_changes.append({
                "field": name,
                "from": old.get(name),
                "to": new.get(name),
                "diff": word_diff(_text(old.get(name)), _text(new.get(name))),
            })

    old_sections = {s["id"]: s for s in old.get("sections") or []}
    new_sections = {s["id"]: s for s in new.get("sections") or []}
    sections: Dict[str, list] = {
        "added": [s for sid, s in new_sections.items() if sid not in old_sections],
        "removed": [s for sid, s in old_sections.items() if sid not in new_sections],
        "modified": [],
        "unchanged": [],
    }
    for section_id, before in old_sections.items():
        after = new_sections.get(section_id)
        if after is None:
            continue
        changes = compare_sections(before, after)
        if changes:
            sections["modified"].append({"id": section_id, "title": after.get("title"), "changes": changes})
        else:
            sections["unchanged"].append({"id": section_id, "title": after.get("title")})

    statistics = {
        "added_sections": len(sections["added"]),
        "removed_sections": len(sections["removed"]),
        "modified_sections": len(sections["modified"]),
    }
    statistics["total_changes"] = sum(statistics.values()) + len(metadata_changes)
    return {"metadata": {"changes": metadata_changes}, "sections": sections, "statistics": statistics}


def _text(value: Optional[Any]) -> str:
    return "" if value is None else str(value)
