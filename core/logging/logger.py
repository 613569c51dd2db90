"""Journalisation des restaurations.

Chaque restauration a son logger `ikoma.restore.<nom>` : console et fichier
`<logs_dir>/<nom>/restore.log`. Le moteur y branche en plus, le temps d'une
exécution, un flux qui reçoit le journal de la restauration (`capture_log`).
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOGGER_NAMESPACE = "ikoma.restore"
RESTORE_LOG_FILENAME = "restore.log"


def run_log_dir(logs_dir: Path, restore_name: str) -> Path:
    """Dossier de logs d'une restauration ; refuse un nom qui sortirait de `logs_dir`."""

    base = logs_dir.resolve()
    target = (base / restore_name).resolve()
    if not restore_name or target.parent != base:
        raise ValueError(f"nom de restauration invalide pour un dossier de logs: {restore_name!r}")
    return target


def _formatted(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def build_logger(restore_name: str, logs_dir: Optional[Path] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    """Logger d'une restauration.

    Args:
        restore_name: Nom de la restauration, aussi nom de son dossier de logs.
        logs_dir: Racine des logs ; sans elle, seule la console est branchée.
        stream: Flux de la console (stderr par défaut).
    """

    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{restore_name}")
    logger.setLevel(logging.INFO)

    if logs_dir is not None:
        log_dir = run_log_dir(logs_dir, restore_name)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / RESTORE_LOG_FILENAME
        if not any(getattr(handler, "baseFilename", None) == str(log_file) for handler in logger.handlers):
            logger.addHandler(_formatted(logging.FileHandler(log_file, encoding="utf-8")))

    if not any(type(handler) is logging.StreamHandler for handler in logger.handlers):
        logger.addHandler(_formatted(logging.StreamHandler(stream)))

    return logger


@contextmanager
def capture_log(logger: logging.Logger, sink: TextIO) -> Iterator[logging.Handler]:
    """Recopie les lignes horodatées de `logger` dans `sink` pendant le bloc."""

    handler = _formatted(logging.StreamHandler(sink))
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        yield handler
    finally:
        logger.removeHandler(handler)
        handler.flush()
