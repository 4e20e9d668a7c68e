"""
Markdown task files: YAML frontmatter between `---` lines followed by a markdown body.

Parsing is lenient. Unknown or malformed values fall back to defaults so a
hand-edited file never makes a board unreadable.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Mapping, Optional

import yaml

from taskflow.tasks.models import FRONTMATTER_KEYS, VALID_PRIORITIES, VALID_STATUSES, Task
from taskflow.utils import format_rfc3339, parse_rfc3339, utc_now

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_NON_FRONTMATTER_FIELDS = {"content", "file_path", "raw_content"}


def split_frontmatter(raw: str) -> tuple[dict[str, Any], str]:
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return {}, raw
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning("Invalid task frontmatter, treating as empty. error=%s", e)
        data = None
    if not isinstance(data, dict):
        data = {}
    body = raw[match.end() :]
    if body.startswith("\n"):
        body = body[1:]
    return data, body


def _format_date_value(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return format_rfc3339(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return date.fromisoformat(raw).isoformat()
        except ValueError:
            pass
        try:
            parsed = parse_rfc3339(raw)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return format_rfc3339(parsed)
    return None


def _parse_timestamp(value: Any) -> str:
    return _format_date_value(value) or format_rfc3339(utc_now())


def _parse_tags(value: Any) -> list[str]:
    if isinstance(value, list):
        return [tag for tag in value if isinstance(tag, str)]
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return []


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_task(raw: str, path: str) -> Task:
    data, body = split_frontmatter(raw)

    task_id = data.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        task_id = PurePosixPath(path).stem or f"task-{int(utc_now().timestamp() * 1000)}"

    status = data.get("status")
    priority = data.get("priority")
    assignee = data.get("assignee")
    title = data.get("title")

    return Task(
        id=task_id,
        title=title if isinstance(title, str) else "Untitled Task",
        status=status if status in VALID_STATUSES else "TODO",
        priority=priority if priority in VALID_PRIORITIES else "MEDIUM",
        assignee=assignee.strip() if isinstance(assignee, str) and assignee.strip() else "user",
        created_at=_parse_timestamp(data.get("created_at")),
        updated_at=_parse_timestamp(data.get("updated_at")),
        tags=_parse_tags(data.get("tags")),
        start_date=_format_date_value(data.get("start_date")),
        due_date=_format_date_value(data.get("due_date")),
        task_size=_optional_str(data.get("task_size")),
        total_hours=_optional_float(data.get("total_hours")),
        notion_id=_optional_str(data.get("notion_id")),
        content=body,
        file_path=path,
        raw_content=raw,
    )


def _render(frontmatter: Mapping[str, Any], body: str) -> str:
    dumped = yaml.safe_dump(dict(frontmatter), sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n{body}"


def generate_task(task: Task) -> str:
    frontmatter: dict[str, Any] = {}
    for key in FRONTMATTER_KEYS:
        value = getattr(task, key)
        if value is None:
            continue
        frontmatter[key] = list(value) if key == "tags" else value
    body = task.content if task.content.endswith("\n") or not task.content else task.content + "\n"
    return _render(frontmatter, "\n" + body)


def update_frontmatter(raw: str, updates: Mapping[str, Any], *, now: Optional[datetime] = None) -> str:
    """
    Merge `updates` into the frontmatter of `raw` and bump `updated_at`.

    A `content` key replaces the markdown body; other keys that are not
    frontmatter fields are ignored. Keys mapped to None are removed.
    """
    data, body = split_frontmatter(raw)
    for key, value in updates.items():
        if key in _NON_FRONTMATTER_FIELDS:
            continue
        if value is None:
            data.pop(key, None)
        else:
            data[key] = list(value) if isinstance(value, (list, tuple)) else value
    data["updated_at"] = format_rfc3339(now or utc_now())

    if "content" in updates and updates["content"] is not None:
        body = str(updates["content"])
    return _render(data, "\n" + body)
