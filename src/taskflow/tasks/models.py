from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

TaskStatus = Literal["TODO", "IN_PROGRESS", "IN_REVIEW", "NEED_FIX", "COMPLETE", "ON_HOLD"]
TaskPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]

VALID_STATUSES: tuple[str, ...] = ("TODO", "IN_PROGRESS", "IN_REVIEW", "NEED_FIX", "COMPLETE", "ON_HOLD")
VALID_PRIORITIES: tuple[str, ...] = ("LOW", "MEDIUM", "HIGH", "URGENT")

# Frontmatter keys written in this order; optional ones only when set.
FRONTMATTER_KEYS: tuple[str, ...] = (
    "id",
    "title",
    "status",
    "priority",
    "assignee",
    "created_at",
    "updated_at",
    "start_date",
    "due_date",
    "tags",
    "task_size",
    "total_hours",
    "notion_id",
)


@dataclass(slots=True)
class Task:
    id: str
    title: str
    status: TaskStatus = "TODO"
    priority: TaskPriority = "MEDIUM"
    assignee: str = "user"
    created_at: str = ""
    updated_at: str = ""
    tags: list[str] = field(default_factory=list)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    task_size: Optional[str] = None
    total_hours: Optional[float] = None
    notion_id: Optional[str] = None
    # Markdown body below the frontmatter.
    content: str = ""
    file_path: str = ""
    raw_content: str = ""
