"""Implémentations des collaborateurs cluster au-dessus de lightkube."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx2
from lightkube import ApiError, Client
from lightkube.config import client_adapter
from lightkube.config.kubeconfig import KubeConfig
from lightkube.generic_resource import create_global_resource, create_namespaced_resource
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.resources.core_v1 import Namespace

from core.kube.client import (
    AlreadyExistsError,
    APIResource,
    APIResourceList,
    GroupVersionKind,
    KubeApiError,
    WatchEvent,
)
from core.kube.discovery import Discovery

DISCOVERY_TIMEOUT = 10  # secondes
WATCH_SERVER_TIMEOUT = 10  # secondes, borne le délai d'arrêt d'un watch

ClientFactory = Callable[[], Client]


def _to_kube_error(exc: ApiError) -> KubeApiError:
    status = exc.status
    message = getattr(status, "message", None) or str(exc)
    code = getattr(status, "code", None)
    reason = getattr(status, "reason", None)
    if code == 409 and reason == "AlreadyExists":
        return AlreadyExistsError(message)
    return KubeApiError(message, code=code, reason=reason)


def fetch_api_resources(config: Optional[KubeConfig] = None) -> List[APIResourceList]:
    """Interroge `/api` et `/apis` (versions préférées) pour bâtir le catalogue."""

    single = (config or KubeConfig.from_env()).get()
    params = client_adapter.ConnectionParams(timeout=httpx2.Timeout(DISCOVERY_TIMEOUT))
    with client_adapter.Client(single, params) as http:
        return read_api_resources(http)


def read_api_resources(http: Any) -> List[APIResourceList]:
    """Construit le catalogue à partir d'un client HTTP déjà authentifié (`get(path)`)."""

    group_versions: List[str] = list(_get_json(http, "/api").get("versions", []))
    for group in _get_json(http, "/apis").get("groups", []):
        preferred = group.get("preferredVersion") or {}
        if preferred.get("groupVersion"):
            group_versions.append(preferred["groupVersion"])

    catalog: List[APIResourceList] = []
    for group_version in group_versions:
        prefix = "/api" if "/" not in group_version else "/apis"
        payload = _get_json(http, f"{prefix}/{group_version}")
        catalog.append(
            APIResourceList(
                group_version=payload.get("groupVersion", group_version),
                resources=[
                    APIResource(
                        name=item["name"],
                        kind=item.get("kind", ""),
                        namespaced=bool(item.get("namespaced")),
                        singular_name=item.get("singularName", ""),
                        short_names=tuple(item.get("shortNames") or ()),
                        verbs=tuple(item.get("verbs") or ()),
                    )
                    for item in payload.get("resources", [])
                ],
            )
        )
    return catalog


def _get_json(http: Any, path: str) -> Dict[str, Any]:
    response = http.get(path)
    if response.status_code != 200:
        raise KubeApiError(f"Découverte {path} échouée ({response.status_code})", code=response.status_code)
    return response.json()


class LightkubeWatchStream:
    """Watch lightkube sur un client dédié, fermé par `stop()`.

    Le serveur coupe chaque requête après `server_timeout` secondes ; une
    fois le client fermé, lightkube ne peut plus se reconnecter et
    l'itération se termine. Sans resourceVersion, le serveur envoie d'abord
    un ADDED par objet existant : un objet créé avant la connexion est vu.
    """

    def __init__(
        self,
        open_client: ClientFactory,
        resource: Any,
        namespace: Optional[str],
        server_timeout: int = WATCH_SERVER_TIMEOUT,
    ) -> None:
        self._open_client = open_client
        self._resource = resource
        self._namespace = namespace
        self._server_timeout = server_timeout
        self._lock = threading.Lock()
        self._client: Optional[Client] = None
        self._stopped = threading.Event()

    def __iter__(self) -> Iterator[WatchEvent]:
        with self._lock:
            if self._stopped.is_set():
                return
            self._client = client = self._open_client()
        try:
            events = client.watch(self._resource, namespace=self._namespace, server_timeout=self._server_timeout)
            for op, obj in events:
                if self._stopped.is_set():
                    return
                yield WatchEvent(type=op, object=obj.to_dict())
        except Exception:
            # Client fermé par stop() : fin normale du flux.
            if not self._stopped.is_set():
                raise
        finally:
            self.stop()

    def stop(self) -> None:
        with self._lock:
            self._stopped.set()
            client, self._client = self._client, None
        if client is not None:
            client.close()


class LightkubeDynamicClient:
    def __init__(self, client: Client, resource: Any, namespace: Optional[str], open_client: ClientFactory) -> None:
        self._client = client
        self._resource = resource
        self._namespace = namespace
        self._open_client = open_client

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        try:
            created = self._client.create(self._resource.from_dict(obj), namespace=self._namespace)
        except ApiError as exc:
            raise _to_kube_error(exc) from exc
        return created.to_dict()

    def watch(self) -> LightkubeWatchStream:
        return LightkubeWatchStream(self._open_client, self._resource, self._namespace)


class LightkubeDynamicFactory:
    """Clients dynamiques ; chaque watch ouvre son propre client via `open_client`."""

    def __init__(self, client: Client, open_client: ClientFactory) -> None:
        self._client = client
        self._open_client = open_client

    def client_for(self, gvk: GroupVersionKind, resource: APIResource, namespace: str) -> LightkubeDynamicClient:
        if resource.namespaced:
            generic = create_namespaced_resource(gvk.group, gvk.version, gvk.kind, resource.name)
            return LightkubeDynamicClient(self._client, generic, namespace, self._open_client)
        generic = create_global_resource(gvk.group, gvk.version, gvk.kind, resource.name)
        return LightkubeDynamicClient(self._client, generic, None, self._open_client)

class LightkubeNamespaceClient:
    def __init__(self, client: Client) -> None:
        self._client = client

    def ensure_exists(self, name: str) -> bool:
        try:
            self._client.get(Namespace, name=name)
            return False
        except ApiError as exc:
            if exc.status.code != 404:
                raise _to_kube_error(exc) from exc

        try:
            self._client.create(Namespace(metadata=ObjectMeta(name=name)))
        except ApiError as exc:
            error = _to_kube_error(exc)
            if isinstance(error, AlreadyExistsError):
                return False
            raise error from exc
        return True


@dataclass
class KubeCollaborators:
    discovery: Discovery
    dynamic_factory: LightkubeDynamicFactory
    namespace_client: LightkubeNamespaceClient


def build_lightkube_collaborators(logger: Optional[logging.Logger] = None) -> KubeCollaborators:
    """Construit les collaborateurs de production à partir du kubeconfig courant."""

    config = KubeConfig.from_env()
    client = Client(config=config)
    discovery = Discovery(fetcher=lambda: fetch_api_resources(config), logger=logger)
    discovery.refresh()
    return KubeCollaborators(
        discovery=discovery,
        dynamic_factory=LightkubeDynamicFactory(client, lambda: Client(config=config)),
        namespace_client=LightkubeNamespaceClient(client),
    )
