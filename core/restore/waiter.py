"""Attente de disponibilité des objets créés, pilotée par un flux de watch."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from core.kube.client import WatchStream
from core.restore.types import RestoreError

DEFAULT_WAIT_TIMEOUT = 60  # secondes
STOP_JOIN_TIMEOUT = 5  # secondes
READY_EVENT_TYPES = ("ADDED", "MODIFIED")

ReadyFunc = Callable[[Dict[str, Any]], bool]


class WaitTimeoutError(RestoreError):
    """Des objets enregistrés ne sont pas devenus prêts à temps."""

    def __init__(self, message: str, pending: List[str]) -> None:
        super().__init__(message)
        self.pending = pending


class ResourceWaiter:
    """Suit un lot (type de ressource, namespace) jusqu'à ce qu'il soit prêt.

    Un thread de fond consomme le watch pendant que la boucle de création
    enregistre les noms ; l'ensemble des noms en attente est protégé par une
    condition. Un objet vu prêt avant son enregistrement n'est pas attendu.
    """

    def __init__(
        self,
        watch: WatchStream,
        ready: ReadyFunc,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout = timeout
        self._watch = watch
        self._ready = ready
        self._logger = logger or logging.getLogger(__name__)
        self._condition = threading.Condition()
        self._pending: set[str] = set()
        self._seen_ready: set[str] = set()
        self._closed = False
        self._failure: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._consume, name="resource-waiter", daemon=True)
        self._thread.start()

    def register_item(self, name: str) -> None:
        with self._condition:
            if name not in self._seen_ready:
                self._pending.add(name)

    def wait(self) -> None:
        """Bloque jusqu'à ce que tous les objets enregistrés soient prêts.

        Raises:
            WaitTimeoutError: délai dépassé ou watch interrompu ; `pending`
                contient exactement les noms encore non prêts.
        """

        with self._condition:
            self._condition.wait_for(lambda: not self._pending or self._closed, timeout=self.timeout)
            if not self._pending:
                return
            pending = sorted(self._pending)

        names = ", ".join(pending)
        if self._closed:
            reason = f": {self._failure}" if self._failure else ""
            raise WaitTimeoutError(f"watch interrompu avant que tous les objets soient prêts{reason} (en attente: {names})", pending)
        raise WaitTimeoutError(f"délai de {self.timeout}s dépassé, objets non prêts: {names}", pending)

    def stop(self) -> None:
        """Arrête le watch puis attend, de façon bornée, la fin du thread de fond."""

        self._watch.stop()
        self._thread.join(STOP_JOIN_TIMEOUT)
        if self._thread.is_alive():
            self._logger.warning("Le watch ne s'est pas arrêté après %ss", STOP_JOIN_TIMEOUT)

    def _consume(self) -> None:
        try:
            for event in self._watch:
                if event.type not in READY_EVENT_TYPES:
                    continue
                name = (event.object.get("metadata") or {}).get("name")
                if not name:
                    continue
                try:
                    is_ready = bool(self._ready(event.object))
                except Exception as exc:  # noqa: BLE001 - un objet illisible ne bloque pas le watch
                    self._logger.warning("Évaluation de disponibilité impossible pour %s: %s", name, exc)
                    continue

                with self._condition:
                    if not is_ready:
                        self._seen_ready.discard(name)
                        continue
                    if name in self._pending:
                        self._pending.discard(name)
                        self._condition.notify_all()
                    else:
                        self._seen_ready.add(name)
        except Exception as exc:  # noqa: BLE001 - remonté par wait()
            self._logger.warning("Watch interrompu: %s", exc)
            with self._condition:
                self._failure = exc
        finally:
            with self._condition:
                self._closed = True
                self._condition.notify_all()
