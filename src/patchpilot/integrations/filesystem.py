import logging
import os
from pathlib import Path
from tempfile import mkstemp

from patchpilot.exceptions import FileAccessError

logger = logging.getLogger(__name__)

# Never listed or descended into.
IGNORED_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"})


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = mkstemp(suffix=path.suffix, prefix=path.name + ".tmp", dir=path.parent)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            _ = f.write(text)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class LocalFileSystem:
    """Workspace-rooted file access. Paths are relative to `root` and may not escape it."""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate

        # Lexical check on the logical path, then on the symlink target
        abs_path = Path(os.path.normpath(candidate))
        try:
            _ = abs_path.relative_to(self.root)
            _ = abs_path.resolve().relative_to(self.root)
        except ValueError as e:
            raise FileAccessError(f"File '{path}' is outside the workspace '{self.root}'") from e
        return abs_path

    def read_file(self, path: str) -> str:
        abs_path = self.resolve(path)
        try:
            # Keep '\r\n' intact so edits preserve the file's line endings
            with abs_path.open(encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError as e:
            raise FileAccessError(f"File not found: {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise FileAccessError(f"Could not read '{path}': {e}") from e

    def write_file(self, path: str, content: str) -> None:
        abs_path = self.resolve(path)
        try:
            atomic_write_text(abs_path, content)
        except OSError as e:
            raise FileAccessError(f"Could not write '{path}': {e}") from e
        logger.debug("Wrote %d characters to %s", len(content), path)

    def list_files(self, limit: int) -> tuple[list[str], bool]:
        results: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
            rel_dir = Path(dirpath).relative_to(self.root)
            entries = [f"{(rel_dir / d).as_posix()}/" for d in dirnames]
            entries += [(rel_dir / f).as_posix() for f in sorted(filenames)]
            for entry in entries:
                if len(results) >= limit:
                    return results, True
                results.append(entry)
        return results, False

    def list_directory(self, path: str) -> list[str]:
        abs_path = self.resolve(path)
        if not abs_path.is_dir():
            raise FileAccessError(f"Directory not found: {path}")
        try:
            children = sorted(abs_path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise FileAccessError(f"Could not list '{path}': {e}") from e
        return [f"{child.name}/" if child.is_dir() else child.name for child in children]
