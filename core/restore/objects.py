"""Objet archivé sans schéma : un document JSON avec quelques accès typés."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from core.kube.client import GroupVersionKind, parse_group_version


class Unstructured:
    """Document Kubernetes arbitraire (kind/apiVersion/metadata embarqués).

    Seuls les champs universels sont projetés ; le reste du document est
    manipulé comme un dictionnaire imbriqué.
    """

    def __init__(self, document: Dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise TypeError(f"document JSON objet attendu, reçu {type(document).__name__}")
        self.document = document

    @classmethod
    def from_json(cls, payload: bytes | str) -> "Unstructured":
        return cls(json.loads(payload))

    def to_dict(self) -> Dict[str, Any]:
        return self.document

    @property
    def api_version(self) -> str:
        return str(self.document.get("apiVersion") or "")

    @property
    def kind(self) -> str:
        return str(self.document.get("kind") or "")

    @property
    def group_version_kind(self) -> GroupVersionKind:
        group, version = parse_group_version(self.api_version)
        return GroupVersionKind(group=group, version=version, kind=self.kind)

    @property
    def metadata(self) -> Dict[str, Any]:
        metadata = self.document.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
            self.document["metadata"] = metadata
        return metadata

    @property
    def name(self) -> str:
        return str(self.metadata.get("name") or "")

    @name.setter
    def name(self, value: str) -> None:
        self.metadata["name"] = value

    @property
    def namespace(self) -> str:
        return str(self.metadata.get("namespace") or "")

    @namespace.setter
    def namespace(self, value: str) -> None:
        if value:
            self.metadata["namespace"] = value
        else:
            self.metadata.pop("namespace", None)

    @property
    def labels(self) -> Dict[str, str]:
        return _string_map(self.metadata.get("labels"))

    @labels.setter
    def labels(self, value: Dict[str, str]) -> None:
        self.metadata["labels"] = dict(value)

    @property
    def annotations(self) -> Dict[str, str]:
        return _string_map(self.metadata.get("annotations"))

    @annotations.setter
    def annotations(self, value: Dict[str, str]) -> None:
        if value:
            self.metadata["annotations"] = dict(value)
        else:
            self.metadata.pop("annotations", None)

    @property
    def owner_references(self) -> List[Dict[str, Any]]:
        refs = self.metadata.get("ownerReferences")
        if not isinstance(refs, list):
            return []
        return [ref for ref in refs if isinstance(ref, dict)]

    def get_nested(self, *path: str) -> Optional[Any]:
        node: Any = self.document
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return node

    def pop_nested(self, *path: str) -> Optional[Any]:
        parent = self.get_nested(*path[:-1]) if len(path) > 1 else self.document
        if not isinstance(parent, dict):
            return None
        return parent.pop(path[-1], None)

    def __repr__(self) -> str:
        return f"Unstructured(kind={self.kind!r}, namespace={self.namespace!r}, name={self.name!r})"


def _string_map(value: Any) -> Dict[str, str]:
    # Une map mal formée dans l'archive est traitée comme absente.
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items()}


def add_label(obj: Unstructured, key: str, value: str) -> None:
    labels = obj.labels
    labels[key] = value
    obj.labels = labels


def has_controller_owner(refs: List[Dict[str, Any]]) -> bool:
    """Vrai si une ownerReference désigne un contrôleur responsable de l'objet."""

    return any(ref.get("controller") is True for ref in refs)
