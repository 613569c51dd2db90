"""Stratégies de restauration par type de ressource."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from core.kube.client import DiscoveryHelper, GroupResource
from core.restore.objects import Unstructured
from core.restore.types import Backup, RestoreRequest


class ResourceRestorer(Protocol):
    """Capacités d'une stratégie.

    `prepare` renvoie l'objet à créer et un avertissement éventuel ; une
    exception abandonne uniquement l'objet en cours.
    """

    def handles(self, obj: Unstructured, restore: RestoreRequest) -> bool: ...

    def prepare(
        self, obj: Unstructured, restore: RestoreRequest, backup: Backup
    ) -> Tuple[Any, Optional[str]]: ...

    def wait(self) -> bool: ...

    def ready(self, obj: Dict[str, Any]) -> bool: ...


class BasicRestorer:
    """Stratégie par défaut : accepte tout, ne modifie rien, n'attend rien."""

    def handles(self, obj: Unstructured, restore: RestoreRequest) -> bool:
        return True

    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        return obj, None

    def wait(self) -> bool:
        return False

    def ready(self, obj: Dict[str, Any]) -> bool:
        return True


class RestorerRegistry:
    """Table des stratégies personnalisées, indexée par nom canonique."""

    def __init__(self, restorers: Optional[Mapping[str, ResourceRestorer]] = None) -> None:
        self._restorers: Dict[str, ResourceRestorer] = dict(restorers or {})

    @classmethod
    def resolve(cls, helper: DiscoveryHelper, custom: Mapping[str, ResourceRestorer]) -> "RestorerRegistry":
        """Résout les noms courts (`pods`, `jobs`...) via la découverte.

        Un nom introuvable lève `ResolutionError`.
        """

        return cls({str(helper.resolve_group_resource(name)): restorer for name, restorer in custom.items()})

    def get(self, group_resource: GroupResource) -> Optional[ResourceRestorer]:
        return self._restorers.get(str(group_resource))
