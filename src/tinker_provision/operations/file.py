from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, as_bool

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

BACKUP_SUFFIX = ".tinker-bak"


class FileStep(Step):
    """Ensure a file holds literal content or a rendered template.

    The rendered output is compared with the file on disk, so the step is
    satisfied exactly when a write would change nothing.
    """

    kind = "file"

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("destination")
        if not raw_path:
            raise ValueError("file step requires a path")
        self.path = Path(str(raw_path)).expanduser()
        if not self.path.is_absolute():
            raise ValueError(f"file step path must be absolute: {raw_path}")
        self.template = spec.get("template") or spec.get("source")
        raw_content = spec.get("content")
        if self.template is None and raw_content is None:
            raise ValueError("file step requires content or a template")
        self.content = None if raw_content is None else str(raw_content)
        if self.template is not None:
            self.template = str(self.template)
        self.mode = self._parse_mode(spec.get("mode"))
        variables = spec.get("variables", {})
        if not isinstance(variables, Mapping):
            raise ValueError("file step variables must be a mapping")
        self.variables = dict(variables)
        self.backup = as_bool(spec.get("backup", False), "backup", self.kind)

    def describe(self) -> str:
        return f"file {self.path}"

    def check(self, context: "RunContext") -> bool:
        desired = self.render(context)
        if context.executor.read_file(self.path) != desired:
            return False
        if self.mode is not None and context.executor.file_mode(self.path) != self.mode:
            return False
        return True

    def apply(self, context: "RunContext") -> Optional[str]:
        content = self.render(context)
        notes: list[str] = []
        if self.backup:
            backup = self._backup(context, content)
            if backup is not None:
                notes.append(f"backup->{backup}")
        _, detail = context.executor.write_file(
            self.path,
            content=content,
            mode=self.mode,
            privileged=self.requires_privilege,
        )
        return ", ".join([*notes, detail])

    def _backup(self, context: "RunContext", content: str) -> Optional[Path]:
        """Copy the current destination aside before it is replaced."""

        current = context.executor.read_file(self.path)
        if current is None or current == content:
            return None
        target = self.path.with_name(self.path.name + BACKUP_SUFFIX)
        context.executor.write_file(
            target,
            content=current,
            mode=context.executor.file_mode(self.path),
            privileged=self.requires_privilege,
        )
        return target

    def render(self, context: "RunContext") -> str:
        if self.template is None:
            return self.content or ""
        source = context.resolve_path(self.template)
        return context.renderer.render_file(source, context.profile, self.variables)

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError("file mode must be an octal string or integer")
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return int(text, 8)
        except ValueError:
            raise ValueError(f"invalid file mode '{text}'") from None
