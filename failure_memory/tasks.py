"""Task list collaborator: ``[{id, text}]`` entries."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional


class TaskList:
    """Mutable list of task dicts. The engine only edits task text via tagging."""

    def __init__(self, tasks: list[dict] | None = None, on_change: Optional[Callable[[], None]] = None) -> None:
        self.tasks = tasks if tasks is not None else []
        self.on_change = on_change

    def find(self, task_id: str) -> dict | None:
        return next((task for task in self.tasks if str(task.get("id")) == task_id), None)

    def text_of(self, task_id: str) -> str | None:
        task = self.find(task_id)
        return None if task is None else str(task.get("text", ""))

    def update_text(self, task_id: str, text: str) -> None:
        task = self.find(task_id)
        if task is None:
            raise KeyError(task_id)
        task["text"] = text
        if self.on_change is not None:
            self.on_change()

    @classmethod
    def load(cls, file_path: str | Path) -> "TaskList":
        path = Path(file_path)
        payload = json.loads(path.read_text(encoding="utf-8")) if path.exists() else []
        if not isinstance(payload, list):
            raise ValueError("task list must be a JSON list of objects")
        task_list = cls(payload)
        task_list.on_change = lambda: task_list.save(path)
        return task_list

    def save(self, file_path: str | Path) -> None:
        Path(file_path).write_text(json.dumps(self.tasks, indent=2), encoding="utf-8")
