"""Stratégies spécifiques aux ressources courantes.

Chaque stratégie retire les champs renseignés par le serveur ou par un
contrôleur, qui feraient échouer la création dans le cluster cible.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

from core.restore.filters import IncludesExcludes
from core.restore.objects import Unstructured
from core.restore.restorers import BasicRestorer, ResourceRestorer
from core.restore.types import Backup, RestoreRequest

DEFAULT_TOKEN_PATTERN = re.compile(r"default-token-.*")
CONTROLLER_UID_LABEL = "controller-uid"
PVC_BIND_ANNOTATIONS = ("pv.kubernetes.io/bind-completed", "pv.kubernetes.io/bound-by-controller")


def reset_metadata_and_status(obj: Unstructured, keep_annotations: bool) -> Unstructured:
    """Ne garde que name/namespace/labels (et annotations) et retire `status`."""

    kept: Dict[str, Any] = {}
    keys = ("name", "namespace", "labels", "annotations") if keep_annotations else ("name", "namespace", "labels")
    for key in keys:
        if key in obj.metadata:
            kept[key] = obj.metadata[key]
    obj.document["metadata"] = kept
    obj.document.pop("status", None)
    return obj


class NamespaceRestorer(BasicRestorer):
    def handles(self, obj: Unstructured, restore: RestoreRequest) -> bool:
        namespaces = (
            IncludesExcludes()
            .includes(*restore.included_namespaces)
            .excludes(*restore.excluded_namespaces)
        )
        return namespaces.should_include(obj.name)

    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        obj.name = restore.target_namespace(obj.name)
        obj.document.pop("spec", None)
        return obj, None


class PodRestorer(BasicRestorer):
    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        spec = obj.get_nested("spec")
        if not isinstance(spec, dict):
            raise ValueError("spec absent ou invalide")

        spec.pop("nodeName", None)
        spec["volumes"] = [
            volume for volume in spec.get("volumes") or [] if not _is_default_token(volume.get("name"))
        ]
        for containers_key in ("initContainers", "containers"):
            for container in spec.get(containers_key) or []:
                if "volumeMounts" in container:
                    container["volumeMounts"] = [
                        mount for mount in container["volumeMounts"] if not _is_default_token(mount.get("name"))
                    ]
        return obj, None


class ServiceRestorer(BasicRestorer):
    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        spec = obj.get_nested("spec")
        if not isinstance(spec, dict):
            raise ValueError("spec absent ou invalide")

        # Un service headless garde son clusterIP "None".
        if spec.get("clusterIP") != "None":
            spec.pop("clusterIP", None)
            spec.pop("clusterIPs", None)
        for port in spec.get("ports") or []:
            port.pop("nodePort", None)
        return obj, None


class JobRestorer(BasicRestorer):
    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        match_labels = obj.get_nested("spec", "selector", "matchLabels")
        if isinstance(match_labels, dict):
            match_labels.pop(CONTROLLER_UID_LABEL, None)
        template_labels = obj.get_nested("spec", "template", "metadata", "labels")
        if isinstance(template_labels, dict):
            template_labels.pop(CONTROLLER_UID_LABEL, None)
        return obj, None


class PersistentVolumeClaimRestorer(BasicRestorer):
    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        annotations = obj.annotations
        for key in PVC_BIND_ANNOTATIONS:
            annotations.pop(key, None)
        obj.annotations = annotations
        return obj, None


class PersistentVolumeRestorer(BasicRestorer):
    """Les volumes doivent être disponibles avant la restauration des claims."""

    def prepare(self, obj: Unstructured, restore: RestoreRequest, backup: Backup) -> Tuple[Any, Optional[str]]:
        reset_metadata_and_status(obj, keep_annotations=True)
        obj.pop_nested("spec", "claimRef")
        return obj, None

    def wait(self) -> bool:
        return True

    def ready(self, obj: Dict[str, Any]) -> bool:
        status = obj.get("status") or {}
        return status.get("phase") == "Available"


def default_restorers() -> Dict[str, ResourceRestorer]:
    return {
        "namespaces": NamespaceRestorer(),
        "persistentvolumes": PersistentVolumeRestorer(),
        "persistentvolumeclaims": PersistentVolumeClaimRestorer(),
        "pods": PodRestorer(),
        "services": ServiceRestorer(),
        "jobs": JobRestorer(),
    }


def _is_default_token(name: Optional[str]) -> bool:
    return bool(name) and DEFAULT_TOKEN_PATTERN.match(name) is not None
