"""Décompression et extraction de l'archive de sauvegarde (tar.gz)."""
from __future__ import annotations

import logging
import posixpath
import shutil
import tarfile
import zlib
from typing import BinaryIO

from core.restore.filesystem import FileSystem
from core.restore.types import RestoreError


class ArchiveError(RestoreError):
    """Archive illisible ou corrompue ; `directory` est le dossier partiellement rempli."""

    def __init__(self, message: str, directory: str | None = None) -> None:
        super().__init__(message)
        self.directory = directory


def extract_backup(stream: BinaryIO, fs: FileSystem, logger: logging.Logger) -> str:
    """Extrait un flux tar.gz dans un dossier temporaire et renvoie son chemin.

    Les entrées déjà écrites restent en place en cas d'erreur : le nettoyage du
    dossier revient à l'appelant.
    """

    try:
        directory = fs.temp_dir()
    except OSError as exc:
        logger.error("Création du dossier temporaire impossible: %s", exc)
        raise ArchiveError(f"création du dossier temporaire impossible: {exc}") from exc

    try:
        with tarfile.open(fileobj=stream, mode="r|gz") as tar:
            for member in tar:
                target = _target_path(directory, member.name)
                if member.isdir():
                    fs.mkdir_all(target, member.mode)
                elif member.isreg():
                    fs.mkdir_all(posixpath.dirname(target))
                    source = tar.extractfile(member)
                    if source is None:
                        raise ArchiveError(f"contenu illisible pour {member.name}", directory)
                    with fs.create(target) as handle:
                        shutil.copyfileobj(source, handle)
                    fs.chmod(target, member.mode)
    except ArchiveError as exc:
        exc.directory = directory
        raise
    except (tarfile.TarError, EOFError, zlib.error, OSError) as exc:
        logger.error("Lecture de l'archive impossible: %s", exc)
        raise ArchiveError(f"archive illisible: {exc}", directory) from exc

    return directory


def _target_path(directory: str, name: str) -> str:
    cleaned = posixpath.normpath(name)
    if cleaned.startswith("/") or cleaned == ".." or cleaned.startswith("../"):
        raise ArchiveError(f"entrée hors du dossier d'extraction: {name}")
    return posixpath.join(directory, cleaned)
