"""Accès disque du moteur, abstrait pour pouvoir le remplacer en test."""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, List, Protocol


class FileSystem(Protocol):
    def temp_dir(self, prefix: str = "") -> str: ...

    def mkdir_all(self, path: str, mode: int = 0o755) -> None: ...

    def create(self, path: str) -> BinaryIO: ...

    def chmod(self, path: str, mode: int) -> None: ...

    def remove_all(self, path: str) -> None: ...

    def read_dir(self, path: str) -> List[os.DirEntry]: ...

    def read_file(self, path: str) -> bytes: ...

    def dir_exists(self, path: str) -> bool: ...


class OsFileSystem:
    """Système de fichiers local."""

    def temp_dir(self, prefix: str = "") -> str:
        return tempfile.mkdtemp(prefix=prefix or "ikoma-restore-")

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        Path(path).mkdir(mode=mode, parents=True, exist_ok=True)

    def create(self, path: str) -> BinaryIO:
        return open(path, "wb")

    def chmod(self, path: str, mode: int) -> None:
        os.chmod(path, mode)

    def remove_all(self, path: str) -> None:
        shutil.rmtree(path, ignore_errors=True)

    def read_dir(self, path: str) -> List[os.DirEntry]:
        with os.scandir(path) as entries:
            return sorted(entries, key=lambda entry: entry.name)

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def dir_exists(self, path: str) -> bool:
        target = Path(path)
        if not target.exists():
            return False
        if not target.is_dir():
            raise NotADirectoryError(f"{path} existe mais n'est pas un dossier")
        return True
