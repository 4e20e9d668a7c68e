"""
TaskFlow sync - keeps markdown kanban task files in a GitHub repository in sync
with a local cache of unpushed edits.
"""

__version__ = "0.1.0"
