"""File-system document repository over a folder of markdown notes."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from failure_memory import frontmatter


@runtime_checkable
class DocumentRepository(Protocol):
    """Document store the engine reads notes from and writes tags into."""

    def list_by_path_prefix(self, prefix: str) -> list[str]: ...

    def find_by_basename(self, basename: str) -> str | None: ...

    def exists(self, ref: str) -> bool: ...

    def read(self, ref: str) -> str: ...

    def read_metadata(self, ref: str) -> dict: ...

    def create(self, ref: str, content: str) -> str: ...

    def modify(self, ref: str, content: str) -> None: ...


class VaultRepository:
    """Documents are addressed by POSIX paths relative to ``root``."""

    def __init__(self, root: str | Path, suffix: str = ".md") -> None:
        self.root = Path(root)
        self.suffix = suffix

    def _resolve(self, ref: str) -> Path:
        relative = PurePosixPath(ref.replace("\\", "/"))
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"document reference escapes the vault: {ref!r}")
        return self.root.joinpath(*relative.parts)

    def list_by_path_prefix(self, prefix: str) -> list[str]:
        if not self.root.exists():
            return []
        refs = []
        for path in self.root.rglob(f"*{self.suffix}"):
            ref = path.relative_to(self.root).as_posix()
            if ref.startswith(prefix):
                refs.append(ref)
        return sorted(refs)

    def find_by_basename(self, basename: str) -> str | None:
        for ref in self.list_by_path_prefix(""):
            if PurePosixPath(ref).stem == basename:
                return ref
        return None

    def exists(self, ref: str) -> bool:
        return self._resolve(ref).is_file()

    def read(self, ref: str) -> str:
        return self._resolve(ref).read_text(encoding="utf-8")

    def read_metadata(self, ref: str) -> dict:
        meta, _ = frontmatter.split(self.read(ref))
        return meta or {}

    def read_body(self, ref: str) -> str:
        _, body = frontmatter.split(self.read(ref))
        return body

    def create(self, ref: str, content: str) -> str:
        path = self._resolve(ref)
        if path.exists():
            raise FileExistsError(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return ref

    def modify(self, ref: str, content: str) -> None:
        path = self._resolve(ref)
        if not path.is_file():
            raise FileNotFoundError(ref)
        path.write_text(content, encoding="utf-8")

    def append(self, ref: str, text: str) -> None:
        path = self._resolve(ref)
        if not path.is_file():
            raise FileNotFoundError(ref)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(text)
