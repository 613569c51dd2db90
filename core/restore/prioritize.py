from __future__ import annotations

import logging
from typing import List, Sequence

from core.kube.client import DiscoveryHelper, GroupResource, parse_group_version
from core.restore.filters import IncludesExcludes


def prioritize_resources(
    helper: DiscoveryHelper,
    priorities: Sequence[str],
    included_resources: IncludesExcludes,
    logger: logging.Logger,
) -> List[GroupResource]:
    """Ordonne les types de ressources à restaurer.

    Les entrées de `priorities` passent d'abord, dans leur ordre ; tous les
    autres types du catalogue suivent, triés par nom canonique. Un nom de
    priorité introuvable lève `ResolutionError` : la liste est mal configurée.
    """

    ordered: List[GroupResource] = []
    placed: set[str] = set()

    for name in priorities:
        group_resource = helper.resolve_group_resource(name)
        key = str(group_resource)
        if key in placed:
            continue
        if not included_resources.should_include(key):
            logger.info("Ressource non incluse: %s", key)
            continue
        ordered.append(group_resource)
        placed.add(key)

    by_name: dict[str, GroupResource] = {}
    for resource_list in helper.resources():
        group, _ = parse_group_version(resource_list.group_version)
        for resource in resource_list.resources:
            group_resource = GroupResource(group=group, resource=resource.name)
            key = str(group_resource)
            if key in placed or key in by_name:
                continue
            if not included_resources.should_include(key):
                logger.info("Ressource non incluse: %s", key)
                continue
            by_name[key] = group_resource

    ordered.extend(by_name[key] for key in sorted(by_name))
    return ordered
