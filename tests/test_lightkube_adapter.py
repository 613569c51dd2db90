import threading

import pytest
from lightkube import ApiError
from lightkube.generic_resource import create_namespaced_resource
from lightkube.models.meta_v1 import Status

from core.kube import lightkube_adapter
from core.kube.client import AlreadyExistsError, GroupVersionKind, KubeApiError, APIResource, is_already_exists
from core.kube.lightkube_adapter import (
    LightkubeDynamicClient,
    LightkubeDynamicFactory,
    LightkubeNamespaceClient,
    LightkubeWatchStream,
    fetch_api_resources,
    read_api_resources,
)

Widget = create_namespaced_resource("tests.ikoma.io", "v1", "Widget", "widgets")


def _api_error(code, reason, message="refusé"):
    return ApiError(status=Status(code=code, reason=reason, message=message))


class _Object:
    def __init__(self, document):
        self.document = document

    def to_dict(self):
        return self.document


class FakeLightkubeClient:
    """Doublure de `lightkube.Client` : réponses et erreurs programmées."""

    def __init__(self, get_error=None, create_error=None, events=(), watch_error=None, block=False):
        self.get_error = get_error
        self.create_error = create_error
        self.events = list(events)
        self.watch_error = watch_error
        self.block = block
        self.created = []
        self.watch_calls = []
        self.closed = threading.Event()
        self.watching = threading.Event()

    def get(self, res, name, namespace=None):
        if self.get_error:
            raise self.get_error
        return _Object({"metadata": {"name": name}})

    def create(self, obj, namespace=None):
        if self.create_error:
            raise self.create_error
        self.created.append((obj, namespace))
        return obj

    def watch(self, res, *, namespace=None, server_timeout=None):
        self.watch_calls.append((res, namespace, server_timeout))
        for op, document in self.events:
            yield op, _Object(document)
        if self.watch_error:
            raise self.watch_error
        if self.block:
            self.watching.set()
            self.closed.wait(5)
            raise RuntimeError("Cannot send a request, as the client has been closed.")

    def close(self):
        self.closed.set()


def test_conflict_already_exists_maps_to_already_exists_error():
    error = lightkube_adapter._to_kube_error(_api_error(409, "AlreadyExists", 'widgets "a" already exists'))

    assert isinstance(error, AlreadyExistsError)
    assert is_already_exists(error)
    assert str(error) == 'widgets "a" already exists'


def test_other_api_errors_keep_code_and_reason():
    error = lightkube_adapter._to_kube_error(_api_error(409, "Conflict"))

    assert not isinstance(error, AlreadyExistsError)
    assert (error.code, error.reason) == (409, "Conflict")


def test_namespace_is_created_when_missing():
    client = FakeLightkubeClient(get_error=_api_error(404, "NotFound"))

    assert LightkubeNamespaceClient(client).ensure_exists("ns1") is True
    assert client.created[0][0].metadata.name == "ns1"


def test_existing_namespace_is_not_created():
    client = FakeLightkubeClient()

    assert LightkubeNamespaceClient(client).ensure_exists("ns1") is False
    assert client.created == []


def test_namespace_created_concurrently_is_not_an_error():
    client = FakeLightkubeClient(get_error=_api_error(404, "NotFound"), create_error=_api_error(409, "AlreadyExists"))

    assert LightkubeNamespaceClient(client).ensure_exists("ns1") is False


def test_namespace_lookup_failure_is_raised():
    client = FakeLightkubeClient(get_error=_api_error(403, "Forbidden", "accès refusé"))

    with pytest.raises(KubeApiError) as excinfo:
        LightkubeNamespaceClient(client).ensure_exists("ns1")

    assert excinfo.value.code == 403
    assert client.created == []


def test_namespace_create_failure_is_raised():
    client = FakeLightkubeClient(get_error=_api_error(404, "NotFound"), create_error=_api_error(422, "Invalid"))

    with pytest.raises(KubeApiError) as excinfo:
        LightkubeNamespaceClient(client).ensure_exists("ns1")

    assert excinfo.value.code == 422


def test_dynamic_client_creates_from_documents():
    client = FakeLightkubeClient()
    dynamic = LightkubeDynamicClient(client, Widget, "ns1", lambda: client)

    created = dynamic.create({"apiVersion": "tests.ikoma.io/v1", "kind": "Widget", "metadata": {"name": "a"}})

    assert created["metadata"]["name"] == "a"
    assert client.created[0][1] == "ns1"


def test_dynamic_client_create_conflict_is_already_exists():
    client = FakeLightkubeClient(create_error=_api_error(409, "AlreadyExists"))
    dynamic = LightkubeDynamicClient(client, Widget, "ns1", lambda: client)

    with pytest.raises(AlreadyExistsError):
        dynamic.create({"apiVersion": "tests.ikoma.io/v1", "kind": "Widget", "metadata": {"name": "a"}})


def test_factory_builds_cluster_scoped_clients_without_namespace():
    client = FakeLightkubeClient()
    factory = LightkubeDynamicFactory(client, lambda: client)

    dynamic = factory.client_for(
        GroupVersionKind("tests.ikoma.io", "v1", "Gadget"), APIResource("gadgets", "Gadget", False), "ignored"
    )
    dynamic.create({"apiVersion": "tests.ikoma.io/v1", "kind": "Gadget", "metadata": {"name": "g"}})

    assert client.created[0][1] is None


def test_watch_converts_events_and_closes_its_client():
    watch_client = FakeLightkubeClient(events=[("ADDED", {"metadata": {"name": "a"}}), ("MODIFIED", {"metadata": {"name": "b"}})])
    opened = []

    def open_client():
        opened.append(watch_client)
        return watch_client

    stream = LightkubeWatchStream(open_client, Widget, "ns1", server_timeout=3)
    events = [(event.type, event.object["metadata"]["name"]) for event in stream]

    assert events == [("ADDED", "a"), ("MODIFIED", "b")]
    assert watch_client.watch_calls == [(Widget, "ns1", 3)]
    assert len(opened) == 1
    assert watch_client.closed.is_set()


def test_stop_interrupts_a_quiet_watch():
    watch_client = FakeLightkubeClient(block=True)
    stream = LightkubeWatchStream(lambda: watch_client, Widget, "ns1")
    outcome = {}

    def consume():
        try:
            outcome["events"] = list(stream)
        except Exception as exc:  # noqa: BLE001
            outcome["error"] = exc

    thread = threading.Thread(target=consume, daemon=True)
    thread.start()
    assert watch_client.watching.wait(5)

    stream.stop()
    thread.join(5)

    assert not thread.is_alive()
    assert outcome == {"events": []}
    assert watch_client.closed.is_set()


def test_stopped_watch_never_opens_a_client():
    opened = []
    stream = LightkubeWatchStream(lambda: opened.append(1), Widget, "ns1")

    stream.stop()

    assert list(stream) == []
    assert opened == []


def test_watch_failure_is_raised_while_running():
    watch_client = FakeLightkubeClient(watch_error=_api_error(403, "Forbidden"))
    stream = LightkubeWatchStream(lambda: watch_client, Widget, "ns1")

    with pytest.raises(ApiError):
        list(stream)
    assert watch_client.closed.is_set()


class _Response:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload


class FakeHttp:
    def __init__(self, pages):
        self.pages = pages
        self.paths = []

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return None

    def get(self, path):
        self.paths.append(path)
        if path not in self.pages:
            return _Response({}, status_code=404)
        return _Response(self.pages[path])


DISCOVERY_PAGES = {
    "/api": {"versions": ["v1"]},
    "/apis": {
        "groups": [
            {"name": "apps", "preferredVersion": {"groupVersion": "apps/v1"}},
            {"name": "sans-version"},
        ]
    },
    "/api/v1": {
        "groupVersion": "v1",
        "resources": [
            {"name": "pods", "kind": "Pod", "namespaced": True, "singularName": "pod", "shortNames": ["po"], "verbs": ["create", "watch"]},
            {"name": "namespaces", "kind": "Namespace", "namespaced": False},
        ],
    },
    "/apis/apps/v1": {
        "groupVersion": "apps/v1",
        "resources": [{"name": "deployments", "kind": "Deployment", "namespaced": True, "shortNames": ["deploy"]}],
    },
}


def test_read_api_resources_builds_the_catalog():
    http = FakeHttp(DISCOVERY_PAGES)

    catalog = read_api_resources(http)

    assert [item.group_version for item in catalog] == ["v1", "apps/v1"]
    pods = catalog[0].resources[0]
    assert (pods.name, pods.kind, pods.namespaced, pods.singular_name) == ("pods", "Pod", True, "pod")
    assert pods.short_names == ("po",)
    assert pods.verbs == ("create", "watch")
    assert catalog[0].resources[1].namespaced is False
    assert catalog[1].resources[0].short_names == ("deploy",)
    assert http.paths == ["/api", "/apis", "/api/v1", "/apis/apps/v1"]


def test_discovery_http_failure_is_a_kube_error():
    pages = dict(DISCOVERY_PAGES)
    del pages["/apis/apps/v1"]

    with pytest.raises(KubeApiError) as excinfo:
        read_api_resources(FakeHttp(pages))

    assert excinfo.value.code == 404


def test_fetch_api_resources_uses_the_kubeconfig_connection(monkeypatch):
    seen = {}

    class Config:
        def get(self):
            return "single-config"

    def fake_http_client(single, params):
        seen["single"] = single
        seen["timeout"] = params.timeout
        return FakeHttp(DISCOVERY_PAGES)

    monkeypatch.setattr(lightkube_adapter.client_adapter, "Client", fake_http_client)

    catalog = fetch_api_resources(Config())

    assert seen["single"] == "single-config"
    assert seen["timeout"].connect == lightkube_adapter.DISCOVERY_TIMEOUT
    assert len(catalog) == 2


def test_build_collaborators_wires_discovery_and_dedicated_watch_clients(monkeypatch):
    clients = []

    class RecordingClient(FakeLightkubeClient):
        def __init__(self, config=None):
            super().__init__()
            self.config = config
            clients.append(self)

    monkeypatch.setattr(lightkube_adapter.KubeConfig, "from_env", classmethod(lambda cls: "kubeconfig"))
    monkeypatch.setattr(lightkube_adapter, "Client", RecordingClient)
    monkeypatch.setattr(lightkube_adapter, "fetch_api_resources", lambda config: read_api_resources(FakeHttp(DISCOVERY_PAGES)))

    collaborators = lightkube_adapter.build_lightkube_collaborators()

    assert str(collaborators.discovery.resolve_group_resource("deploy")) == "deployments.apps"
    assert len(clients) == 1

    dynamic = collaborators.dynamic_factory.client_for(
        GroupVersionKind("tests.ikoma.io", "v1", "Widget"), APIResource("widgets", "Widget", True), "ns1"
    )
    assert list(dynamic.watch()) == []
    assert len(clients) == 2
    assert clients[1].config == "kubeconfig"
    assert clients[1].closed.is_set()
    assert not clients[0].closed.is_set()
