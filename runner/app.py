from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from core.restore.filters import LabelSelector
from core.restore.types import Backup, RestoreError, RestoreRequest
from core.services import restore as restore_service
from core.store.sqlite_store import RestoreState

app = FastAPI(title="IKOMA Restore Runner", version="0.1.0")
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


# --- Helpers ---
def _state() -> RestoreState:
    state = RestoreState(restore_service.DB_PATH)
    state.ensure_schema()
    return state


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_mapping(value: str) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for item in _split_csv(value):
        source, sep, target = item.partition(":")
        if not sep or not source.strip() or not target.strip():
            raise HTTPException(status_code=400, detail=f"mapping invalide: {item} (attendu ancien:nouveau)")
        mapping[source.strip()] = target.strip()
    return mapping


def _fetch_restore(name: str) -> Optional[Dict[str, Any]]:
    return _state().get(name)


def _start_thread(target: Any, *, args: tuple) -> None:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()


# --- Routes ---
@app.get("/", response_class=HTMLResponse)
def index(request: Request, status: str | None = None, message: str | None = None) -> HTMLResponse:
    restores: List[Dict[str, Any]] = _state().list_restores()
    context = {
        "restores": restores,
        "count": len(restores),
        "status_message": status,
        "status_detail": message,
    }
    return templates.TemplateResponse(request, "index.html", context)


@app.post("/restores")
def create_restore(
    name: str = Form(...),
    backup_name: str = Form(...),
    archive_path: str = Form(...),
    included_namespaces: str = Form(""),
    excluded_namespaces: str = Form(""),
    included_resources: str = Form(""),
    excluded_resources: str = Form(""),
    namespace_mapping: str = Form(""),
    label_selector: str = Form(""),
) -> RedirectResponse:
    cleaned_name = name.strip()
    cleaned_backup = backup_name.strip()
    cleaned_archive = archive_path.strip()
    if not cleaned_name:
        raise HTTPException(status_code=400, detail="name est requis")
    if not cleaned_backup:
        raise HTTPException(status_code=400, detail="backup_name est requis")
    if not cleaned_archive:
        raise HTTPException(status_code=400, detail="archive_path est requis")

    existing = _fetch_restore(cleaned_name)
    if existing and existing["status"] == "IN_PROGRESS":
        raise HTTPException(status_code=409, detail="Restauration déjà en cours")

    request = RestoreRequest(
        name=cleaned_name,
        backup_name=cleaned_backup,
        label_selector=LabelSelector.parse(label_selector) if label_selector.strip() else None,
        included_resources=_split_csv(included_resources),
        excluded_resources=_split_csv(excluded_resources),
        included_namespaces=_split_csv(included_namespaces),
        excluded_namespaces=_split_csv(excluded_namespaces),
        namespace_mapping=_parse_mapping(namespace_mapping),
    )
    backup = Backup(name=cleaned_backup, storage_location=cleaned_archive)

    def _run() -> None:
        try:
            restore_service.run(request, backup, Path(cleaned_archive).expanduser())
        except RestoreError:
            # run trace déjà l'échec dans les logs et le statut SQLite
            pass

    _start_thread(_run, args=())
    return RedirectResponse(
        url=f"/restores/{quote(cleaned_name)}?status=restore_started&message=Restauration%20lanc%C3%A9e",
        status_code=303,
    )


@app.get("/restores/{name}", response_class=HTMLResponse)
def restore_detail(request: Request, name: str, status: str | None = None, message: str | None = None) -> HTMLResponse:
    restore = _fetch_restore(name)
    if not restore:
        raise HTTPException(status_code=404, detail="Restauration inconnue")

    context = {
        "name": name,
        "restore": restore,
        "has_log": restore_service.run_log_path(name) is not None,
        "status_message": status,
        "status_detail": message,
    }
    return templates.TemplateResponse(request, "restore_detail.html", context)


@app.get("/restores/{name}/result")
def restore_result(name: str) -> JSONResponse:
    restore = _fetch_restore(name)
    if not restore:
        raise HTTPException(status_code=404, detail="Restauration inconnue")

    return JSONResponse(
        {
            "name": restore["name"],
            "backup_name": restore["backup_name"],
            "status": restore["status"],
            "message": restore["message"],
            "updated_at": restore["updated_at"],
            "warnings": restore["warnings"].to_dict(),
            "errors": restore["errors"].to_dict(),
        }
    )


@app.get("/restores/{name}/log", response_class=PlainTextResponse)
def view_log(name: str) -> PlainTextResponse:
    content = restore_service.read_run_log(name)
    if content is None:
        raise HTTPException(status_code=404, detail="Journal de restauration introuvable")
    return PlainTextResponse(content)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
