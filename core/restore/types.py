from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from core.restore.filters import LabelSelector

RESTORE_LABEL_KEY = "ikoma-restore"
CLUSTER_SCOPED_DIR = "cluster"
NAMESPACE_SCOPED_DIR = "namespaces"


class RestoreError(Exception):
    """Erreur fonctionnelle lors d'une restauration."""


@dataclass(frozen=True)
class Backup:
    """Sauvegarde source ; seule son identité intéresse le moteur."""

    name: str
    namespace: str = ""
    storage_location: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class RestoreRequest:
    """Intention de l'opérateur, immuable pendant toute la restauration."""

    name: str
    backup_name: str
    namespace: str = ""
    label_selector: Optional[LabelSelector] = None
    included_resources: Tuple[str, ...] = ()
    excluded_resources: Tuple[str, ...] = ()
    included_namespaces: Tuple[str, ...] = ()
    excluded_namespaces: Tuple[str, ...] = ()
    namespace_mapping: Dict[str, str] = field(default_factory=dict)

    def target_namespace(self, namespace: str) -> str:
        return self.namespace_mapping.get(namespace, namespace)
