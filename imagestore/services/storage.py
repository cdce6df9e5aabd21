import asyncio
import shutil
from pathlib import Path
from typing import List

from imagestore.utils.paths import clean, join_src


class LocalStorage:
    """Files under a single root directory, addressed by relative ``src`` paths."""

    def __init__(self, root: str):
        self.base = Path(root)
        self.base.mkdir(parents=True, exist_ok=True)

    def path(self, src: str) -> Path:
        # src is re-sanitized so nothing can escape the root
        parts = clean(src)
        if "name" not in parts:
            raise ValueError(f"Not a file path: {src!r}")
        return self.base / join_src(parts.get("folder"), parts["name"], parts["extension"])

    def exists(self, src: str) -> bool:
        try:
            return self.path(src).exists()
        except ValueError:
            return False

    def write_sync(self, src: str, data: bytes) -> str:
        path = self.path(src)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return str(path.relative_to(self.base))

    def read_sync(self, src: str) -> bytes:
        return self.path(src).read_bytes()

    def delete_sync(self, src: str) -> None:
        self.path(src).unlink()

    def copy_sync(self, src: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.path(src), dest)

    def size_sync(self, src: str) -> int:
        return self.path(src).stat().st_size

    def list_folder(self, folder: str) -> List[str]:
        directory = self.base / folder
        if not directory.is_dir():
            return []
        return sorted(f"{folder}/{p.name}" for p in directory.iterdir() if p.is_file())

    async def write(self, src: str, data: bytes) -> str:
        return await asyncio.to_thread(self.write_sync, src, data)

    async def read(self, src: str) -> bytes:
        return await asyncio.to_thread(self.read_sync, src)

    async def delete(self, src: str) -> None:
        """Delete a stored file. Raises FileNotFoundError/OSError on failure."""
        await asyncio.to_thread(self.delete_sync, src)

    async def copy(self, src: str, dest: Path) -> None:
        await asyncio.to_thread(self.copy_sync, src, dest)
