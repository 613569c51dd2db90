from core.restore.custom_restorers import (
    JobRestorer,
    NamespaceRestorer,
    PersistentVolumeClaimRestorer,
    PersistentVolumeRestorer,
    PodRestorer,
    ServiceRestorer,
    default_restorers,
    reset_metadata_and_status,
)
from core.restore.objects import Unstructured
from core.restore.restorers import BasicRestorer, RestorerRegistry
from core.restore.types import Backup, RestoreRequest
from fakes import make_discovery, make_object

REQUEST = RestoreRequest(name="r1", backup_name="b1")
BACKUP = Backup(name="b1")


def _unstructured(kind, name, namespace="ns1", **extra):
    return Unstructured(make_object(kind, name, namespace, **extra))


def test_reset_metadata_keeps_identity_only():
    obj = _unstructured(
        "ConfigMap",
        "a",
        metadata={"uid": "1", "resourceVersion": "42", "labels": {"app": "web"}, "annotations": {"x": "y"}},
        status={"phase": "x"},
    )

    reset_metadata_and_status(obj, keep_annotations=False)

    assert obj.metadata == {"name": "a", "namespace": "ns1", "labels": {"app": "web"}}
    assert "status" not in obj.document


def test_basic_restorer_changes_nothing():
    restorer = BasicRestorer()
    obj = _unstructured("ConfigMap", "a", metadata={"uid": "1"})

    prepared, warning = restorer.prepare(obj, REQUEST, BACKUP)

    assert prepared is obj
    assert prepared.metadata["uid"] == "1"
    assert warning is None
    assert restorer.handles(obj, REQUEST)
    assert not restorer.wait()


def test_namespace_restorer_honours_namespace_filters_and_mapping():
    request = RestoreRequest(
        name="r1",
        backup_name="b1",
        excluded_namespaces=("kube-system",),
        namespace_mapping={"ns1": "ns2"},
    )
    restorer = NamespaceRestorer()

    assert not restorer.handles(_unstructured("Namespace", "kube-system", ""), request)
    obj = _unstructured("Namespace", "ns1", "", spec={"finalizers": ["kubernetes"]})
    assert restorer.handles(obj, request)

    prepared, _ = restorer.prepare(obj, request, BACKUP)
    assert prepared.name == "ns2"
    assert "spec" not in prepared.document


def test_pod_restorer_drops_node_and_default_token():
    obj = _unstructured(
        "Pod",
        "web",
        spec={
            "nodeName": "node-1",
            "volumes": [{"name": "default-token-abcde"}, {"name": "data"}],
            "initContainers": [{"name": "init", "volumeMounts": [{"name": "default-token-abcde"}]}],
            "containers": [{"name": "app", "volumeMounts": [{"name": "default-token-abcde"}, {"name": "data"}]}],
        },
    )

    prepared, warning = PodRestorer().prepare(obj, REQUEST, BACKUP)

    spec = prepared.document["spec"]
    assert warning is None
    assert "nodeName" not in spec
    assert spec["volumes"] == [{"name": "data"}]
    assert spec["initContainers"][0]["volumeMounts"] == []
    assert spec["containers"][0]["volumeMounts"] == [{"name": "data"}]


def test_service_restorer_drops_allocated_addresses():
    obj = _unstructured(
        "Service",
        "web",
        spec={"clusterIP": "10.0.0.1", "clusterIPs": ["10.0.0.1"], "ports": [{"port": 80, "nodePort": 30080}]},
    )

    prepared, _ = ServiceRestorer().prepare(obj, REQUEST, BACKUP)

    assert prepared.document["spec"] == {"ports": [{"port": 80}]}


def test_headless_service_keeps_cluster_ip_none():
    obj = _unstructured("Service", "db", spec={"clusterIP": "None"})

    prepared, _ = ServiceRestorer().prepare(obj, REQUEST, BACKUP)

    assert prepared.document["spec"]["clusterIP"] == "None"


def test_job_restorer_drops_controller_uid():
    obj = _unstructured(
        "Job",
        "migrate",
        api_version="batch/v1",
        spec={
            "selector": {"matchLabels": {"controller-uid": "abc", "job-name": "migrate"}},
            "template": {"metadata": {"labels": {"controller-uid": "abc", "job-name": "migrate"}}},
        },
    )

    prepared, _ = JobRestorer().prepare(obj, REQUEST, BACKUP)

    assert prepared.get_nested("spec", "selector", "matchLabels") == {"job-name": "migrate"}
    assert prepared.get_nested("spec", "template", "metadata", "labels") == {"job-name": "migrate"}


def test_pvc_restorer_drops_bind_annotations():
    obj = _unstructured(
        "PersistentVolumeClaim",
        "data",
        metadata={"annotations": {"pv.kubernetes.io/bind-completed": "yes", "team": "ops"}},
    )

    prepared, _ = PersistentVolumeClaimRestorer().prepare(obj, REQUEST, BACKUP)

    assert prepared.annotations == {"team": "ops"}


def test_pv_restorer_waits_for_available_phase():
    restorer = PersistentVolumeRestorer()
    obj = _unstructured("PersistentVolume", "pv1", "", spec={"claimRef": {"name": "data"}, "capacity": {"storage": "1Gi"}})

    prepared, _ = restorer.prepare(obj, REQUEST, BACKUP)

    assert prepared.document["spec"] == {"capacity": {"storage": "1Gi"}}
    assert restorer.wait()
    assert restorer.ready({"status": {"phase": "Available"}})
    assert not restorer.ready({"status": {"phase": "Pending"}})
    assert not restorer.ready({})


def test_registry_resolves_default_restorers():
    registry = RestorerRegistry.resolve(make_discovery(), default_restorers())

    assert isinstance(registry.get(make_discovery().resolve_group_resource("jobs")), JobRestorer)
    assert isinstance(registry.get(make_discovery().resolve_group_resource("pv")), PersistentVolumeRestorer)
    assert registry.get(make_discovery().resolve_group_resource("secrets")) is None
