"""Detection of orchestrator project files in a deployment directory."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import AmbiguousProjectFileError, NoProjectFileError

BASE_FILES = ("docker-compose.yml", "compose.yml")
OVERRIDE_FILE = "compose.override.yml"


@dataclass(frozen=True, slots=True)
class ProjectFileResolver:
    """Decide which project files must be passed explicitly to the orchestrator.

    ``extensions`` lists the recognised ``compose.{name}.yml`` overlays in the
    order they are applied. The override file always comes last.
    """

    extensions: tuple[str, ...] = ("expose",)
    strict: bool = True

    def extension_filename(self, extension: str) -> str:
        return f"compose.{extension}.yml"

    def base_file(self, directory: Path) -> str:
        """Return the base file name present in *directory*."""
        found = [name for name in BASE_FILES if (directory / name).is_file()]
        if not found:
            raise NoProjectFileError(directory, BASE_FILES)
        if len(found) > 1 and self.strict:
            raise AmbiguousProjectFileError(directory, found)
        return found[0]

    def detect(self, directory: Path) -> list[str]:
        """Return the ordered project files to select, or ``[]`` for implicit discovery.

        When only a base file exists the orchestrator finds it by itself, so
        nothing is returned. Otherwise the base file is listed first, then the
        extension files in declared order, then the override file.
        """
        base = self.base_file(directory)
        extras = [
            self.extension_filename(extension)
            for extension in self.extensions
            if (directory / self.extension_filename(extension)).is_file()
        ]
        if (directory / OVERRIDE_FILE).is_file():
            extras.append(OVERRIDE_FILE)
        if not extras:
            return []
        return [base, *extras]


def file_args(files: Sequence[str]) -> list[str]:
    """Convert project file names into ``-f name`` arguments."""
    args: list[str] = []
    for name in files:
        args.extend(["-f", Path(name).name])
    return args


__all__ = ["BASE_FILES", "OVERRIDE_FILE", "ProjectFileResolver", "file_args"]
