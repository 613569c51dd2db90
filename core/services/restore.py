"""Restauration complète d'une sauvegarde dans le cluster courant.

Ce module enchaîne un chemin unique et simple :
- validation de la demande et de l'archive locale
- construction des collaborateurs cluster (lightkube, kubeconfig courant)
- exécution du moteur de restauration
- journalisation dans `data/logs/<restauration>/restore.log` et journal
  compressé de la restauration dans `restore-log.gz`
- mise à jour du statut dans SQLite (`COMPLETED`, `PARTIALLY_FAILED`, `FAILED`...)
"""
from __future__ import annotations

import gzip
from pathlib import Path
from typing import Optional, Tuple

from core.kube.lightkube_adapter import KubeCollaborators, build_lightkube_collaborators
from core.logging.logger import build_logger, run_log_dir
from core.restore.custom_restorers import default_restorers
from core.restore.preflight import RestoreSettings, load_settings, preflight_archive, validate_restore_request
from core.restore.restore import KubernetesRestorer
from core.restore.result import RestoreResult
from core.restore.types import Backup, RestoreError, RestoreRequest
from core.store.sqlite_store import RestoreState

ROOT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT_DIR / "data"
LOGS_DIR = DATA_DIR / "logs"
DB_PATH = DATA_DIR / "state.sqlite"
RUN_LOG_FILENAME = "restore-log.gz"


def run(
    request: RestoreRequest,
    backup: Backup,
    archive_path: Path,
    collaborators: Optional[KubeCollaborators] = None,
    settings: Optional[RestoreSettings] = None,
) -> Tuple[RestoreResult, RestoreResult]:
    """Restaure l'archive `archive_path` de la sauvegarde `backup`.

    Args:
        request: Demande de restauration (filtres, mapping de namespaces...).
        backup: Sauvegarde source, déjà récupérée localement.
        archive_path: Archive tar.gz de la sauvegarde.
        collaborators: Accès cluster ; par défaut construits depuis le kubeconfig.
        settings: Configuration ; par défaut `load_settings()`.

    Returns:
        (avertissements, erreurs) de la restauration.

    Raises:
        RestoreError: demande invalide ou échec avant/pendant la restauration
            (le statut SQLite est quand même mis à jour).
    """

    state = RestoreState(DB_PATH)
    state.ensure_schema()

    problems = validate_restore_request(request)
    if problems:
        message = "; ".join(problems)
        build_logger(request.name).error("Demande de restauration invalide: %s", message)
        state.upsert_status(request.name, request.backup_name, "FAILED_VALIDATION", message)
        raise RestoreError(f"demande de restauration invalide: {message}")

    logger = build_logger(request.name, LOGS_DIR)
    logger.info("=== Restauration %s (sauvegarde %s) démarrée ===", request.name, backup)
    state.upsert_status(request.name, request.backup_name, "IN_PROGRESS", "Restauration en cours")

    try:
        settings = settings or load_settings()
        preflight_archive(archive_path, logger)
        collaborators = collaborators or build_lightkube_collaborators(logger)
        restorer = KubernetesRestorer(
            collaborators.discovery,
            collaborators.dynamic_factory,
            collaborators.namespace_client,
            resource_priorities=settings.resource_priorities,
            restorers=default_restorers(),
            logger=logger,
            wait_timeout=settings.wait_timeout,
            non_restorable_resources=settings.non_restorable_resources,
        )
        run_log = run_log_dir(LOGS_DIR, request.name) / RUN_LOG_FILENAME
        with archive_path.open("rb") as archive, run_log.open("wb") as log_file:
            warnings, errors = restorer.restore(request, backup, archive, log_file)
    except Exception as exc:  # noqa: BLE001 - capture volontaire pour tracer l'échec
        message = f"restauration échouée: {exc}"
        logger.exception(message)
        state.upsert_status(request.name, request.backup_name, "FAILED", message)
        raise RestoreError(message) from exc

    status = "COMPLETED" if errors.is_empty() else "PARTIALLY_FAILED"
    message = f"{warnings.count()} avertissement(s), {errors.count()} erreur(s)"
    state.upsert_status(request.name, request.backup_name, status, message)
    state.record_result(request.name, warnings, errors)
    logger.info("=== Restauration %s terminée: %s (%s) ===", request.name, status, message)
    return warnings, errors


def run_log_path(name: str) -> Optional[Path]:
    """Chemin du journal compressé d'une restauration, ou None s'il n'existe pas."""

    try:
        run_log = run_log_dir(LOGS_DIR, name) / RUN_LOG_FILENAME
    except ValueError:
        return None
    return run_log if run_log.is_file() else None


def read_run_log(name: str) -> Optional[str]:
    """Renvoie le journal décompressé d'une restauration, ou None s'il n'existe pas."""

    run_log = run_log_path(name)
    if run_log is None:
        return None
    with gzip.open(run_log, "rt", encoding="utf-8", errors="replace") as f:
        return f.read()
