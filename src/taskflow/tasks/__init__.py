from taskflow.tasks.codec import generate_task, parse_task, update_frontmatter
from taskflow.tasks.models import Task

__all__ = ["Task", "generate_task", "parse_task", "update_frontmatter"]
