"""Moteur de restauration d'une sauvegarde dans un cluster Kubernetes.

Déroulé d'une restauration :
- extraction de l'archive tar.gz dans un dossier temporaire
- ressources sans namespace (`cluster/`), puis chaque namespace retenu
  (`namespaces/<ns>/`), après application du mapping de namespaces
- dans chaque périmètre, les types de ressources dans l'ordre de priorité
- pour chaque objet : décodage, filtres, stratégie, création, attente éventuelle

Aucune erreur ne remonte à l'appelant : tout est rendu sous forme de deux
`RestoreResult` (avertissements, erreurs).
"""
from __future__ import annotations

import gzip
import io
import logging
import os
from typing import BinaryIO, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.kube.client import (
    APIResource,
    DiscoveryHelper,
    DynamicClient,
    DynamicFactory,
    GroupResource,
    NamespaceClient,
    ResolutionError,
    is_already_exists,
)
from core.logging.logger import capture_log
from core.restore.archive import ArchiveError, extract_backup
from core.restore.filesystem import FileSystem, OsFileSystem
from core.restore.filters import (
    IncludesExcludes,
    SelectorError,
    generate_includes_excludes,
    selector_matches,
)
from core.restore.objects import Unstructured, add_label, has_controller_owner
from core.restore.prioritize import prioritize_resources
from core.restore.restorers import BasicRestorer, ResourceRestorer, RestorerRegistry
from core.restore.result import RestoreResult
from core.restore.types import (
    CLUSTER_SCOPED_DIR,
    NAMESPACE_SCOPED_DIR,
    RESTORE_LABEL_KEY,
    Backup,
    RestoreRequest,
)
from core.restore.waiter import DEFAULT_WAIT_TIMEOUT, ResourceWaiter, WaitTimeoutError

NON_RESTORABLE_RESOURCES = ("nodes", "events")

Results = Tuple[RestoreResult, RestoreResult]


class KubernetesRestorer:
    """Point d'entrée : restaure une sauvegarde dans le cluster cible."""

    def __init__(
        self,
        discovery: DiscoveryHelper,
        dynamic_factory: DynamicFactory,
        namespace_client: NamespaceClient,
        resource_priorities: Sequence[str],
        restorers: Optional[Mapping[str, ResourceRestorer]] = None,
        fs: Optional[FileSystem] = None,
        logger: Optional[logging.Logger] = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        non_restorable_resources: Iterable[str] = NON_RESTORABLE_RESOURCES,
    ) -> None:
        self.discovery = discovery
        self.dynamic_factory = dynamic_factory
        self.namespace_client = namespace_client
        self.resource_priorities = list(resource_priorities)
        # Un nom de stratégie inconnu est une erreur de configuration : on lève ici.
        self.restorers = RestorerRegistry.resolve(discovery, restorers or {})
        self.fs = fs or OsFileSystem()
        self.logger = logger or logging.getLogger(__name__)
        self.wait_timeout = wait_timeout
        self.non_restorable_resources = list(non_restorable_resources)

    def restore(self, restore: RestoreRequest, backup: Backup, backup_stream: BinaryIO, log_sink: BinaryIO) -> Results:
        """Exécute la restauration et renvoie (avertissements, erreurs).

        Le journal horodaté de la restauration est écrit, compressé en gzip,
        dans `log_sink`.
        """

        run_logger = self.logger.getChild(restore.name or "restore")
        run_logger.setLevel(logging.INFO)
        log_stream = io.TextIOWrapper(gzip.GzipFile(fileobj=log_sink, mode="wb"), encoding="utf-8")
        try:
            with capture_log(run_logger, log_stream):
                try:
                    return self._restore(restore, backup, backup_stream, run_logger)
                except Exception as exc:  # noqa: BLE001 - rien ne doit remonter à l'appelant
                    run_logger.exception("Restauration %s interrompue: %s", restore.name, exc)
                    return RestoreResult(), RestoreResult(general=[f"restauration interrompue: {exc}"])
        finally:
            log_stream.close()

    def _restore(self, restore: RestoreRequest, backup: Backup, backup_stream: BinaryIO, logger: logging.Logger) -> Results:
        if restore.label_selector is not None:
            try:
                restore.label_selector.validate()
            except SelectorError as exc:
                logger.error("Sélecteur de labels invalide: %s", exc)
                return RestoreResult(), RestoreResult(general=[f"sélecteur de labels invalide: {exc}"])

        resource_filter = self._resource_filter(restore, logger)

        try:
            prioritized = prioritize_resources(self.discovery, self.resource_priorities, resource_filter, logger)
        except (ResolutionError, ValueError) as exc:
            logger.error("Priorisation des ressources impossible: %s", exc)
            return RestoreResult(), RestoreResult(general=[str(exc)])

        logger.info("Ordre de restauration: %s", ", ".join(str(item) for item in prioritized))

        context = RestoreContext(
            backup=backup,
            backup_stream=backup_stream,
            restore=restore,
            prioritized_resources=prioritized,
            logger=logger,
            dynamic_factory=self.dynamic_factory,
            fs=self.fs,
            namespace_client=self.namespace_client,
            restorers=self.restorers,
            wait_timeout=self.wait_timeout,
        )
        return context.execute()

    def _resource_filter(self, restore: RestoreRequest, logger: logging.Logger) -> IncludesExcludes:
        def resolve(item: str) -> str:
            try:
                return str(self.discovery.resolve_group_resource(item))
            except ResolutionError as exc:
                logger.error("Impossible de résoudre la ressource %s: %s", item, exc)
                return ""

        resource_filter = generate_includes_excludes(restore.included_resources, restore.excluded_resources, resolve)
        for name in self.non_restorable_resources:
            try:
                resource_filter.excludes(str(self.discovery.resolve_group_resource(name)))
            except ResolutionError:
                continue
        return resource_filter


class RestoreContext:
    """État d'une restauration en cours ; mono-thread en dehors des watchs."""

    def __init__(
        self,
        backup: Backup,
        backup_stream: BinaryIO,
        restore: RestoreRequest,
        prioritized_resources: List[GroupResource],
        logger: logging.Logger,
        dynamic_factory: DynamicFactory,
        fs: FileSystem,
        namespace_client: NamespaceClient,
        restorers: RestorerRegistry,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self.backup = backup
        self.backup_stream = backup_stream
        self.restore = restore
        self.prioritized_resources = prioritized_resources
        self.logger = logger
        self.dynamic_factory = dynamic_factory
        self.fs = fs
        self.namespace_client = namespace_client
        self.restorers = restorers
        self.wait_timeout = wait_timeout

    def execute(self) -> Results:
        self.logger.info("Démarrage de la restauration de la sauvegarde %s", self.backup)

        try:
            directory = extract_backup(self.backup_stream, self.fs, self.logger)
        except ArchiveError as exc:
            self.logger.error("Erreur d'extraction de l'archive: %s", exc)
            if exc.directory:
                self.fs.remove_all(exc.directory)
            return RestoreResult(), RestoreResult(general=[str(exc)])

        try:
            return self.restore_from_dir(directory)
        finally:
            self.fs.remove_all(directory)

    def restore_from_dir(self, directory: str) -> Results:
        """Restaure à partir d'une arborescence de sauvegarde déjà extraite."""

        warnings, errors = RestoreResult(), RestoreResult()

        cluster_path = os.path.join(directory, CLUSTER_SCOPED_DIR)
        try:
            cluster_exists = self.fs.dir_exists(cluster_path)
        except OSError as exc:
            errors.cluster.append(str(exc))
            cluster_exists = False
        if cluster_exists:
            w, e = self.restore_namespace("", cluster_path)
            warnings.merge(w)
            errors.merge(e)

        namespaces_path = os.path.join(directory, NAMESPACE_SCOPED_DIR)
        try:
            if not self.fs.dir_exists(namespaces_path):
                return warnings, errors
            entries = self.fs.read_dir(namespaces_path)
        except OSError as exc:
            errors.add_general(str(exc))
            return warnings, errors

        namespace_filter = (
            IncludesExcludes()
            .includes(*self.restore.included_namespaces)
            .excludes(*self.restore.excluded_namespaces)
        )
        for entry in entries:
            if not entry.is_dir():
                continue
            if not namespace_filter.should_include(entry.name):
                self.logger.info("Namespace ignoré: %s", entry.name)
                continue

            w, e = self.restore_namespace(entry.name, os.path.join(namespaces_path, entry.name))
            warnings.merge(w)
            errors.merge(e)

        return warnings, errors

    def restore_namespace(self, ns_name: str, ns_path: str) -> Results:
        """Restaure un dossier de namespace, ou le dossier cluster si `ns_name` est vide."""

        warnings, errors = RestoreResult(), RestoreResult()

        if not ns_name:
            self.logger.info("Restauration des ressources sans namespace")
        else:
            self.logger.info("Restauration du namespace %s", ns_name)

        try:
            resource_dirs = {entry.name: entry for entry in self.fs.read_dir(ns_path) if entry.is_dir()}
        except OSError as exc:
            errors.add(ns_name, str(exc))
            return warnings, errors

        if ns_name:
            target = self.restore.target_namespace(ns_name)
            if target != ns_name:
                self.logger.info("Namespace %s restauré sous le nom %s", ns_name, target)
            ns_name = target

            try:
                if self.namespace_client.ensure_exists(ns_name):
                    self.logger.info("Namespace %s créé", ns_name)
            except Exception as exc:  # noqa: BLE001 - le namespace entier est abandonné
                self.logger.error("Impossible de garantir le namespace %s: %s", ns_name, exc)
                errors.add_general(f"erreur de création du namespace {ns_name}: {exc}")
                return warnings, errors

        canonical = {str(resource) for resource in self.prioritized_resources}
        used: set[str] = set()
        for resource in self.prioritized_resources:
            entry = resource_dirs.get(str(resource))
            # Dossier nommé sans son groupe (`customresourcedefinitions`) : accepté s'il est sans ambiguïté.
            if entry is None and resource.resource not in canonical:
                entry = resource_dirs.get(resource.resource)
            if entry is None or entry.name in used:
                continue
            used.add(entry.name)

            w, e = self.restore_resource_for_namespace(ns_name, os.path.join(ns_path, entry.name), resource)
            warnings.merge(w)
            errors.merge(e)

        return warnings, errors

    def restore_resource_for_namespace(
        self, namespace: str, resource_path: str, group_resource: Optional[GroupResource] = None
    ) -> Results:
        """Restaure un type de ressource dans un namespace (vide = sans namespace)."""

        warnings, errors = RestoreResult(), RestoreResult()
        resource = os.path.basename(resource_path)
        group_resource = group_resource or GroupResource.parse(resource)

        self.logger.info("Restauration de la ressource %s dans le namespace %r", resource, namespace)

        try:
            files = self.fs.read_dir(resource_path)
        except OSError as exc:
            errors.add(namespace, f"erreur de lecture du dossier de ressource {resource!r}: {exc}")
            return warnings, errors
        if not files:
            return warnings, errors

        resource_client: Optional[DynamicClient] = None
        restorer: Optional[ResourceRestorer] = None
        waiter: Optional[ResourceWaiter] = None

        try:
            for entry in files:
                full_path = os.path.join(resource_path, entry.name)
                try:
                    obj = self._unmarshal(full_path)
                except (OSError, ValueError, TypeError) as exc:
                    errors.add(namespace, f"erreur de décodage de {full_path!r}: {exc}")
                    continue

                if not selector_matches(self.restore.label_selector, obj.labels):
                    continue

                if restorer is None:
                    # Le client dépend de l'apiVersion/kind, connus seulement via un objet.
                    try:
                        gvk = obj.group_version_kind
                        self.logger.info("Obtention du client pour %s", gvk)
                        api_resource = APIResource(name=group_resource.resource, kind=gvk.kind, namespaced=bool(namespace))
                        resource_client = self.dynamic_factory.client_for(gvk, api_resource, namespace)
                    except Exception as exc:  # noqa: BLE001 - le lot entier est abandonné
                        errors.add_general(
                            f"erreur d'obtention du client pour le namespace {namespace!r}, ressource {group_resource}: {exc}"
                        )
                        return warnings, errors

                    restorer = self.restorers.get(group_resource)
                    if restorer is None:
                        self.logger.info("Stratégie par défaut pour %s", group_resource)
                        restorer = BasicRestorer()
                    else:
                        self.logger.info("Stratégie personnalisée pour %s", group_resource)

                    if restorer.wait():
                        try:
                            watch = resource_client.watch()
                        except Exception as exc:  # noqa: BLE001 - le lot entier est abandonné
                            errors.add_general(
                                f"erreur de watch pour le namespace {namespace!r}, ressource {group_resource}: {exc}"
                            )
                            return warnings, errors
                        waiter = ResourceWaiter(watch, restorer.ready, timeout=self.wait_timeout, logger=self.logger)

                try:
                    if not restorer.handles(obj, self.restore):
                        continue
                    owned = has_controller_owner(obj.owner_references)
                except Exception as exc:  # noqa: BLE001 - seul cet objet est abandonné
                    errors.add(namespace, f"erreur d'analyse de {full_path}: {exc}")
                    continue
                if owned:
                    self.logger.info("%s/%s a un propriétaire contrôleur, ignoré", obj.namespace, obj.name)
                    continue

                try:
                    prepared, warning = restorer.prepare(obj, self.restore, self.backup)
                except Exception as exc:  # noqa: BLE001 - seul cet objet est abandonné
                    errors.add(namespace, f"erreur de préparation de {full_path}: {exc}")
                    continue
                if warning:
                    warnings.add(namespace, f"avertissement de préparation de {full_path}: {warning}")

                if not isinstance(prepared, Unstructured):
                    errors.add(namespace, f"{full_path}: type inattendu {type(prepared).__name__}")
                    continue

                # Le namespace a pu être remappé.
                prepared.namespace = namespace
                add_label(prepared, RESTORE_LABEL_KEY, self.restore.name)
                self.logger.info("Restauration de %s: %s", obj.kind, prepared.name)
                try:
                    resource_client.create(prepared.to_dict())
                except Exception as exc:  # noqa: BLE001 - seul cet objet est abandonné
                    if is_already_exists(exc):
                        warnings.add(namespace, str(exc))
                        continue
                    self.logger.error("Erreur de restauration de %s: %s", prepared.name, exc)
                    errors.add(namespace, f"erreur de restauration de {full_path}: {exc}")
                    continue

                if waiter is not None:
                    waiter.register_item(prepared.name)

            if waiter is not None:
                try:
                    waiter.wait()
                except WaitTimeoutError as exc:
                    errors.add_general(
                        f"erreur d'attente de toutes les ressources {group_resource} dans le namespace {namespace!r}: {exc}"
                    )
        finally:
            if waiter is not None:
                waiter.stop()

        return warnings, errors

    def _unmarshal(self, file_path: str) -> Unstructured:
        return Unstructured.from_json(self.fs.read_file(file_path))
