"""Write-once markers on source documents and task-list entries."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from failure_memory import frontmatter
from failure_memory.adapters.vault_adapter import DocumentRepository
from failure_memory.config import EngineConfig
from failure_memory.tasks import TaskList

logger = logging.getLogger(__name__)

APPLIED = "applied"
UNCHANGED = "unchanged"
ERROR = "error"

_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,8}$")


def is_document_ref(target: str) -> bool:
    """Paths contain a separator or end in an extension; anything else is a task id."""

    return "/" in target or "\\" in target or bool(_EXTENSION.search(target))


@dataclass(frozen=True)
class TagResult:
    target: str
    tag: str
    status: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status != ERROR

    @property
    def changed(self) -> bool:
        return self.status == APPLIED


class IdempotentTagger:
    """Adds a tag to a target at most once.

    Reading and writing are not done under a lock: callers must not tag the
    same target from overlapping calls. Failures are returned, never retried.
    """

    def __init__(self, repository: DocumentRepository, tasks: TaskList, config: EngineConfig | None = None) -> None:
        self.repository = repository
        self.tasks = tasks
        self.config = config or EngineConfig()

    def apply_tag(self, target: str, tag: str, field: str | None = None) -> TagResult:
        if is_document_ref(target):
            result = self._tag_document(target, tag, field or self.config.failure_tag_field)
        else:
            result = self._tag_task(target, tag)

        if result.status == ERROR:
            logger.warning("Could not tag %s with %s: %s", target, tag, result.detail)
        elif result.status == UNCHANGED:
            logger.debug("%s already carries %s", target, tag)
        return result

    def _tag_document(self, ref: str, tag: str, field: str) -> TagResult:
        try:
            content = self.repository.read(ref)
        except FileNotFoundError:
            return TagResult(ref, tag, ERROR, "document not found")
        except (OSError, ValueError) as exc:
            return TagResult(ref, tag, ERROR, f"unreadable document: {exc}")

        try:
            meta, body = frontmatter.split(content)
        except ValueError as exc:
            return TagResult(ref, tag, ERROR, str(exc))

        # the tag anywhere in the document counts, list field or raw text
        if tag in content:
            return TagResult(ref, tag, UNCHANGED)

        if meta is None:
            updated = f"{content}\n\n{tag}" if content else tag
        else:
            current = meta.get(field)
            if current is None:
                values = []
            elif isinstance(current, str):
                values = [current]
            elif isinstance(current, list):
                values = list(current)
            else:
                return TagResult(ref, tag, ERROR, f"field {field!r} is not a list")
            if tag in values:
                return TagResult(ref, tag, UNCHANGED)
            meta[field] = values + [tag]
            updated = frontmatter.join(meta, body)

        try:
            self.repository.modify(ref, updated)
        except OSError as exc:
            return TagResult(ref, tag, ERROR, f"write failed: {exc}")
        return TagResult(ref, tag, APPLIED)

    def _tag_task(self, task_id: str, tag: str) -> TagResult:
        text = self.tasks.text_of(task_id)
        if text is None:
            return TagResult(task_id, tag, ERROR, "task not found")
        if tag in text:
            return TagResult(task_id, tag, UNCHANGED)

        separator = "" if not text or text.endswith(" ") else " "
        try:
            self.tasks.update_text(task_id, f"{text}{separator}{tag}")
        except OSError as exc:
            return TagResult(task_id, tag, ERROR, f"write failed: {exc}")
        return TagResult(task_id, tag, APPLIED)
