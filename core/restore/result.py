from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class RestoreResult:
    """Messages d'une restauration, à trois niveaux.

    `general` couvre la restauration entière, `cluster` les ressources sans
    namespace et `namespaces` chaque namespace cible. Aucun dédoublonnage :
    deux messages identiques correspondent à deux objets distincts.
    """

    general: List[str] = field(default_factory=list)
    cluster: List[str] = field(default_factory=list)
    namespaces: Dict[str, List[str]] = field(default_factory=dict)

    def merge(self, other: "RestoreResult") -> None:
        self.general.extend(other.general)
        self.cluster.extend(other.cluster)
        for namespace, messages in other.namespaces.items():
            self.namespaces.setdefault(namespace, []).extend(messages)

    def add_general(self, message: str) -> None:
        self.general.append(message)

    def add(self, namespace: str, message: str) -> None:
        if not namespace:
            self.cluster.append(message)
        else:
            self.namespaces.setdefault(namespace, []).append(message)

    def count(self) -> int:
        return len(self.general) + len(self.cluster) + sum(len(m) for m in self.namespaces.values())

    def is_empty(self) -> bool:
        return self.count() == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "general": list(self.general),
            "cluster": list(self.cluster),
            "namespaces": {ns: list(messages) for ns, messages in self.namespaces.items()},
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RestoreResult":
        return cls(
            general=list(payload.get("general", [])),
            cluster=list(payload.get("cluster", [])),
            namespaces={ns: list(messages) for ns, messages in (payload.get("namespaces") or {}).items()},
        )
