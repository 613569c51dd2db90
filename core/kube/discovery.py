"""Catalogue de découverte des types de ressources du cluster cible."""
from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from core.kube.client import APIResourceList, GroupResource, ResolutionError, parse_group_version

DiscoveryFetcher = Callable[[], Iterable[APIResourceList]]


class Discovery:
    """Implémentation de `DiscoveryHelper` sur un catalogue en mémoire.

    Le catalogue est groupé par version de groupe, dans l'ordre fourni par le
    serveur (versions préférées). Les sous-ressources (`pods/log`...) sont
    ignorées : elles ne se restaurent pas.
    """

    def __init__(
        self,
        resources: Iterable[APIResourceList] = (),
        fetcher: Optional[DiscoveryFetcher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._fetcher = fetcher
        self._logger = logger or logging.getLogger(__name__)
        self._resources: List[APIResourceList] = _without_subresources(resources)

    def refresh(self) -> None:
        if self._fetcher is None:
            raise RuntimeError("Aucune source de découverte configurée")
        self._resources = _without_subresources(self._fetcher())
        self._logger.info(
            "Découverte rafraîchie: %s version(s) de groupe, %s ressource(s)",
            len(self._resources),
            sum(len(item.resources) for item in self._resources),
        )

    def resources(self) -> List[APIResourceList]:
        return list(self._resources)

    def resolve_group_resource(self, name: str) -> GroupResource:
        """Résout `pods`, `po`, `pod`, `Pod` ou `deployments.apps` en GroupResource."""

        wanted, _, wanted_group = name.strip().lower().partition(".")
        if not wanted:
            raise ResolutionError(f"Nom de ressource vide: {name!r}")

        for resource_list in self._resources:
            group, _ = parse_group_version(resource_list.group_version)
            if wanted_group and group != wanted_group:
                continue
            for resource in resource_list.resources:
                aliases = {resource.name, resource.singular_name, resource.kind.lower(), *resource.short_names}
                if wanted in aliases:
                    return GroupResource(group=group, resource=resource.name)

        raise ResolutionError(f"Ressource introuvable dans la découverte: {name}")


def _without_subresources(resources: Iterable[APIResourceList]) -> List[APIResourceList]:
    return [
        APIResourceList(
            group_version=item.group_version,
            resources=[resource for resource in item.resources if "/" not in resource.name],
        )
        for item in resources
    ]
