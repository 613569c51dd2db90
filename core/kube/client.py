"""Contrats des collaborateurs cluster utilisés par le moteur de restauration.

Le moteur ne parle jamais directement à l'API Kubernetes : il passe par ces
interfaces, implémentées en production par `core.kube.lightkube_adapter` et
par des doublures en mémoire dans les tests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple


class KubeApiError(Exception):
    """Erreur renvoyée par l'API du cluster cible."""

    def __init__(self, message: str, code: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.reason = reason


class AlreadyExistsError(KubeApiError):
    """L'objet existe déjà dans le cluster (HTTP 409 / AlreadyExists)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=409, reason="AlreadyExists")


class ResolutionError(Exception):
    """Nom de ressource inconnu du catalogue de découverte."""


@dataclass(frozen=True, order=True)
class GroupResource:
    """Identifiant canonique d'un type de ressource (groupe API, ressource)."""

    group: str
    resource: str

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"

    @classmethod
    def parse(cls, value: str) -> "GroupResource":
        resource, _, group = value.partition(".")
        return cls(group=group, resource=resource)


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


def parse_group_version(group_version: str) -> Tuple[str, str]:
    """Découpe `apps/v1` en (`apps`, `v1`) et `v1` en (``, `v1`)."""

    if not group_version or group_version.count("/") > 1:
        raise ValueError(f"groupVersion invalide: {group_version!r}")
    if "/" not in group_version:
        return "", group_version
    group, version = group_version.split("/", 1)
    if not group or not version:
        raise ValueError(f"groupVersion invalide: {group_version!r}")
    return group, version


@dataclass(frozen=True)
class APIResource:
    name: str
    kind: str
    namespaced: bool
    singular_name: str = ""
    short_names: Tuple[str, ...] = ()
    verbs: Tuple[str, ...] = ()


@dataclass
class APIResourceList:
    """Ressources exposées par une version de groupe (`apps/v1`, `v1`...)."""

    group_version: str
    resources: List[APIResource] = field(default_factory=list)


@dataclass(frozen=True)
class WatchEvent:
    type: str
    object: Dict[str, Any]


class WatchStream(Protocol):
    def __iter__(self) -> Iterator[WatchEvent]: ...

    def stop(self) -> None: ...


class DynamicClient(Protocol):
    """Client limité à un type de ressource et à un namespace."""

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]: ...

    def watch(self) -> WatchStream: ...


class DynamicFactory(Protocol):
    def client_for(
        self, gvk: GroupVersionKind, resource: APIResource, namespace: str
    ) -> DynamicClient: ...


class DiscoveryHelper(Protocol):
    def resources(self) -> List[APIResourceList]: ...

    def resolve_group_resource(self, name: str) -> GroupResource: ...


class NamespaceClient(Protocol):
    def ensure_exists(self, name: str) -> bool:
        """Crée le namespace s'il est absent ; renvoie True si créé."""
        ...


def is_already_exists(exc: Optional[BaseException]) -> bool:
    return isinstance(exc, AlreadyExistsError) or (
        isinstance(exc, KubeApiError) and exc.reason == "AlreadyExists"
    )
