from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from core.restore.filters import validate_includes_excludes
from core.restore.restore import NON_RESTORABLE_RESOURCES
from core.restore.types import RestoreError, RestoreRequest
from core.restore.waiter import DEFAULT_WAIT_TIMEOUT

# Le nom sert de valeur de label et de dossier de logs.
RESTORE_NAME_PATTERN = re.compile(r"[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?")

DEFAULT_RESOURCE_PRIORITIES = (
    "namespaces",
    "persistentvolumes",
    "persistentvolumeclaims",
    "secrets",
    "configmaps",
)


@dataclass
class RestoreSettings:
    resource_priorities: Tuple[str, ...] = DEFAULT_RESOURCE_PRIORITIES
    wait_timeout: float = DEFAULT_WAIT_TIMEOUT
    non_restorable_resources: Tuple[str, ...] = NON_RESTORABLE_RESOURCES


def load_settings(env: Optional[Mapping[str, str]] = None) -> RestoreSettings:
    """Charge la configuration : fichier JSON `IKOMA_RESTORE_CONFIG` puis variables d'environnement.

    Raises:
        RestoreError: fichier introuvable, JSON invalide ou valeur incohérente.
    """

    env = env if env is not None else os.environ
    payload: Dict[str, object] = {}

    config_path = env.get("IKOMA_RESTORE_CONFIG")
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise RestoreError(f"Fichier de configuration introuvable: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as exc:  # noqa: B904 - message métier
            raise RestoreError(f"Configuration {path} invalide: {exc}") from exc
        _validate_settings_payload(payload, path)

    priorities = env.get("IKOMA_RESTORE_PRIORITIES")
    if priorities is not None:
        payload["resource_priorities"] = [item.strip() for item in priorities.split(",") if item.strip()]

    timeout = env.get("IKOMA_RESTORE_WAIT_TIMEOUT")
    if timeout is not None:
        try:
            payload["wait_timeout"] = float(timeout)
        except ValueError as exc:
            raise RestoreError(f"IKOMA_RESTORE_WAIT_TIMEOUT doit être un nombre: {timeout!r}") from exc
        if payload["wait_timeout"] <= 0:
            raise RestoreError("IKOMA_RESTORE_WAIT_TIMEOUT doit être strictement positif")

    return RestoreSettings(
        resource_priorities=tuple(payload.get("resource_priorities", DEFAULT_RESOURCE_PRIORITIES)),
        wait_timeout=float(payload.get("wait_timeout", DEFAULT_WAIT_TIMEOUT)),
        non_restorable_resources=tuple(payload.get("non_restorable_resources", NON_RESTORABLE_RESOURCES)),
    )


def validate_restore_request(request: RestoreRequest) -> List[str]:
    """Renvoie la liste des problèmes de la demande (vide si valide)."""

    errors: List[str] = []
    if not request.name.strip():
        errors.append("le nom de la restauration est obligatoire")
    elif not RESTORE_NAME_PATTERN.fullmatch(request.name) or ".." in request.name:
        errors.append(f"nom de restauration invalide: {request.name!r} (lettres, chiffres, '-', '_', '.' ; 63 caractères au plus)")
    if not request.backup_name.strip():
        errors.append("le nom de la sauvegarde (backup_name) est obligatoire")

    errors.extend(
        f"namespaces: {message}"
        for message in validate_includes_excludes(request.included_namespaces, request.excluded_namespaces)
    )
    errors.extend(
        f"ressources: {message}"
        for message in validate_includes_excludes(request.included_resources, request.excluded_resources)
    )

    for source, target in request.namespace_mapping.items():
        if not source or not target:
            errors.append(f"mapping de namespace incomplet: {source!r} -> {target!r}")
        elif source in request.excluded_namespaces:
            errors.append(f"le namespace {source} est exclu mais présent dans le mapping")
    return errors


def preflight_archive(archive_path: Path, logger) -> None:
    if not archive_path.exists():
        raise RestoreError(f"Archive introuvable: {archive_path}")
    if not archive_path.is_file() or not os.access(archive_path, os.R_OK):
        raise RestoreError(f"Archive illisible: {archive_path}")

    logger.info("Archive validée: %s (%s octets)", archive_path, archive_path.stat().st_size)


def _validate_settings_payload(payload: object, config_path: Path) -> None:
    if not isinstance(payload, dict):
        raise RestoreError(f"Configuration {config_path} doit être un objet JSON")

    for list_key in ("resource_priorities", "non_restorable_resources"):
        values = payload.get(list_key, [])
        if not isinstance(values, list) or not all(isinstance(v, str) and v for v in values):
            raise RestoreError(f"La clé '{list_key}' doit être une liste de chaînes")

    if "wait_timeout" in payload:
        timeout = payload["wait_timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise RestoreError("wait_timeout doit être un nombre si présent")
        if timeout <= 0:
            raise RestoreError("wait_timeout doit être strictement positif")
