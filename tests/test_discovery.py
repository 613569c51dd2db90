import pytest

from core.kube.client import (
    APIResource,
    APIResourceList,
    GroupResource,
    GroupVersionKind,
    KubeApiError,
    ResolutionError,
    AlreadyExistsError,
    is_already_exists,
    parse_group_version,
)
from core.kube.discovery import Discovery
from fakes import default_catalog, make_discovery


@pytest.mark.parametrize(
    "name, expected",
    [
        ("pods", GroupResource("", "pods")),
        ("po", GroupResource("", "pods")),
        ("Pod", GroupResource("", "pods")),
        ("deployments.apps", GroupResource("apps", "deployments")),
        ("deploy", GroupResource("apps", "deployments")),
        ("crd", GroupResource("apiextensions.k8s.io", "customresourcedefinitions")),
        ("jobs.batch", GroupResource("batch", "jobs")),
    ],
)
def test_resolve_group_resource(name, expected):
    assert make_discovery().resolve_group_resource(name) == expected


def test_resolve_unknown_or_wrong_group():
    discovery = make_discovery()

    with pytest.raises(ResolutionError):
        discovery.resolve_group_resource("widgets")
    with pytest.raises(ResolutionError):
        discovery.resolve_group_resource("deployments.batch")
    with pytest.raises(ResolutionError):
        discovery.resolve_group_resource("")


def test_subresources_are_not_listed():
    names = [resource.name for item in make_discovery().resources() for resource in item.resources]

    assert "pods/log" not in names
    assert "pods" in names


def test_refresh_uses_fetcher():
    calls = []

    def fetcher():
        calls.append(1)
        return [APIResourceList("v1", [APIResource("secrets", "Secret", True)])]

    discovery = Discovery(default_catalog(), fetcher=fetcher)
    discovery.refresh()

    assert calls == [1]
    assert [item.group_version for item in discovery.resources()] == ["v1"]
    with pytest.raises(ResolutionError):
        discovery.resolve_group_resource("pods")


def test_refresh_without_fetcher_fails():
    with pytest.raises(RuntimeError):
        Discovery().refresh()


def test_group_resource_string_form():
    assert str(GroupResource("", "pods")) == "pods"
    assert str(GroupResource("apps", "deployments")) == "deployments.apps"
    assert GroupResource.parse("customresourcedefinitions.apiextensions.k8s.io") == GroupResource(
        "apiextensions.k8s.io", "customresourcedefinitions"
    )


def test_parse_group_version():
    assert parse_group_version("v1") == ("", "v1")
    assert parse_group_version("apps/v1") == ("apps", "v1")
    assert GroupVersionKind("apps", "v1", "Deployment").api_version == "apps/v1"
    with pytest.raises(ValueError):
        parse_group_version("a/b/c")
    with pytest.raises(ValueError):
        parse_group_version("")


def test_is_already_exists():
    assert is_already_exists(AlreadyExistsError("existe"))
    assert is_already_exists(KubeApiError("existe", code=409, reason="AlreadyExists"))
    assert not is_already_exists(KubeApiError("conflit", code=409, reason="Conflict"))
    assert not is_already_exists(ValueError("x"))
