"""Filtres d'inclusion/exclusion et sélecteurs de labels."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

VALID_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


class SelectorError(ValueError):
    """Sélecteur de labels invalide."""


class IncludesExcludes:
    """Liste d'inclusion (vide ou `*` = tout) et liste d'exclusion prioritaire."""

    def __init__(self) -> None:
        self._includes: set[str] = set()
        self._excludes: set[str] = set()

    def includes(self, *items: str) -> "IncludesExcludes":
        self._includes.update(items)
        return self

    def excludes(self, *items: str) -> "IncludesExcludes":
        self._excludes.update(items)
        return self

    def should_include(self, item: str) -> bool:
        if item in self._excludes:
            return False
        return not self._includes or "*" in self._includes or item in self._includes

    def __repr__(self) -> str:
        return f"IncludesExcludes(includes={sorted(self._includes)}, excludes={sorted(self._excludes)})"


def generate_includes_excludes(
    includes: Iterable[str], excludes: Iterable[str], resolve: Callable[[str], str]
) -> IncludesExcludes:
    """Construit un filtre en passant chaque entrée par `resolve`.

    `*` n'est pas résolu ; une entrée résolue en chaîne vide est ignorée.
    """

    result = IncludesExcludes()
    for item in includes:
        if item == "*":
            result.includes(item)
            continue
        resolved = resolve(item)
        if resolved:
            result.includes(resolved)
    for item in excludes:
        resolved = resolve(item)
        if resolved:
            result.excludes(resolved)
    return result


def validate_includes_excludes(includes: Iterable[str], excludes: Iterable[str]) -> List[str]:
    errors: List[str] = []
    include_set = set(includes)
    exclude_set = set(excludes)
    if len(include_set) > 1 and "*" in include_set:
        errors.append("la liste d'inclusion ne peut contenir '*' que si c'est son seul élément")
    if "*" in exclude_set:
        errors.append("la liste d'exclusion ne peut pas contenir '*'")
    for item in sorted(exclude_set & include_set):
        errors.append(f"la liste d'exclusion ne peut pas contenir un élément inclus: {item}")
    return errors


@dataclass(frozen=True)
class LabelSelectorRequirement:
    key: str
    operator: str
    values: Tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "Exists":
            return self.key in labels
        if self.operator == "DoesNotExist":
            return self.key not in labels
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        return self.key not in labels or labels[self.key] not in self.values


@dataclass(frozen=True)
class LabelSelector:
    """Équivalent de `metav1.LabelSelector` : matchLabels ET matchExpressions."""

    match_labels: Dict[str, str] = field(default_factory=dict)
    match_expressions: Tuple[LabelSelectorRequirement, ...] = ()

    def validate(self) -> None:
        for requirement in self.match_expressions:
            if not requirement.key:
                raise SelectorError("clé vide dans matchExpressions")
            if requirement.operator not in VALID_OPERATORS:
                raise SelectorError(f"opérateur inconnu: {requirement.operator!r}")
            if requirement.operator in ("In", "NotIn") and not requirement.values:
                raise SelectorError(f"l'opérateur {requirement.operator} exige au moins une valeur ({requirement.key})")
            if requirement.operator in ("Exists", "DoesNotExist") and requirement.values:
                raise SelectorError(f"l'opérateur {requirement.operator} n'accepte pas de valeurs ({requirement.key})")

    def matches(self, labels: Mapping[str, str]) -> bool:
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(requirement.matches(labels) for requirement in self.match_expressions)

    @classmethod
    def parse(cls, text: str) -> "LabelSelector":
        """Lit la forme courte `app=web,tier!=db,env in (a|b),!legacy,owner`."""

        match_labels: Dict[str, str] = {}
        expressions: List[LabelSelectorRequirement] = []
        for raw in (part.strip() for part in text.split(",")):
            if not raw:
                continue
            if " in " in raw or " notin " in raw:
                key, operator, rest = raw.partition(" notin ") if " notin " in raw else raw.partition(" in ")
                values = tuple(v.strip() for v in rest.strip().strip("()").split("|") if v.strip())
                op = "NotIn" if operator.strip() == "notin" else "In"
                expressions.append(LabelSelectorRequirement(key.strip(), op, values))
            elif "!=" in raw:
                key, _, value = raw.partition("!=")
                expressions.append(LabelSelectorRequirement(key.strip(), "NotIn", (value.strip(),)))
            elif "=" in raw:
                key, _, value = raw.partition("=")
                match_labels[key.strip()] = value.lstrip("=").strip()
            elif raw.startswith("!"):
                expressions.append(LabelSelectorRequirement(raw[1:].strip(), "DoesNotExist"))
            else:
                expressions.append(LabelSelectorRequirement(raw, "Exists"))
        return cls(match_labels=match_labels, match_expressions=tuple(expressions))


def selector_matches(selector: Optional[LabelSelector], labels: Mapping[str, str]) -> bool:
    """Un sélecteur absent sélectionne tout."""

    return selector is None or selector.matches(labels)
