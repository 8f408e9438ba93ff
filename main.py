from fastapi import Depends, FastAPI, UploadFile, File, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError
from typing import List, Optional, Type
import json
import logging

from config import Settings, get_settings
from models.schemas import (
    HealthOut,
    InstanceLinkIn,
    InstanceLinkOut,
    InstantiateOut,
    LinkOut,
    PrebuiltIn,
    PrebuiltOut,
    PrebuiltRename,
    PrebuiltUpdate,
    StyleSourceIn,
    StyleSourceRename,
    StyleUploadOut,
    StyleValueIn,
)

# Services
from services.collector import instance_depth
from services.loader import load_style_table, apply_style_rows
from services.registry import PrebuiltRegistry
from services.search import search_prebuilts
from services.store import InMemoryStorage, JsonFileStorage
from services.styles import StyleStore

logger = logging.getLogger(__name__)


def build_registry(settings: Settings, style_store: StyleStore) -> PrebuiltRegistry:
    if settings.storage_backend == "memory":
        storage = InMemoryStorage()
    else:
        storage = JsonFileStorage(settings.storage_dir)
    return PrebuiltRegistry.load(style_store, storage, settings.storage_namespace)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Baut die App inkl. Style-Store und Registry (genau einmal pro App, liegt auf app.state).
    Routen holen sich beides über Depends, kein globaler Zustand.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.state.settings = settings
    app.state.style_store = StyleStore()
    app.state.registry = build_registry(settings, app.state.style_store)

    # CORS (für den Editor auf anderem Host)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins, allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    _register_routes(app)
    return app


# ---------- Dependencies ----------
def get_style_store(request: Request) -> StyleStore:
    return request.app.state.style_store


def get_registry(request: Request) -> PrebuiltRegistry:
    return request.app.state.registry



async def _read_instance_body(request: Request, model: Type[BaseModel]) -> BaseModel:
    """
    Body selbst parsen: zu tiefe Instanzbäume sprengen sonst Parser oder Validierung
    und kommen nur als unklarer 400 zurück. Tiefer als max_instance_depth -> 413.
    """
    limit = request.app.state.settings.max_instance_depth
    too_deep = HTTPException(413, f"Instance tree too deep (limit {limit} levels)")
    raw = await request.body()
    try:
        data = json.loads(raw)
    except RecursionError:
        raise too_deep
    except ValueError as e:
        raise HTTPException(400, f"Invalid JSON body: {e}")
    if isinstance(data, dict) and isinstance(data.get("instance"), dict):
        if instance_depth(data["instance"]) > limit:
            raise too_deep
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health(registry: PrebuiltRegistry = Depends(get_registry)) -> HealthOut:
        return HealthOut(
            service=app.title,
            prebuilts=len(registry.records),
            linkedInstances=len(registry.linked_instance_ids),
            pendingWrite=registry.pending_write,
        )

    # ---------- Styles ----------
    @app.get("/styles")
    def styles(store: StyleStore = Depends(get_style_store)):
        return store.dump()

    @app.post("/styles/sources", status_code=201)
    def create_style_source(req: StyleSourceIn, store: StyleStore = Depends(get_style_store)):
        try:
            sid = store.create_style_source(req.type, req.name, source_id=req.id)
        except ValueError as e:
            raise HTTPException(422, str(e))
        return store.get_style_source(sid)

    @app.patch("/styles/sources/{source_id}")
    def rename_style_source(source_id: str, req: StyleSourceRename,
                            store: StyleStore = Depends(get_style_store)):
        if not store.rename_style_source(source_id, req.name):
            raise HTTPException(404, "style source not found")
        return store.get_style_source(source_id)

    @app.delete("/styles/sources/{source_id}", status_code=204)
    def delete_style_source(source_id: str, store: StyleStore = Depends(get_style_store)):
        store.delete_style_source(source_id)
        return Response(status_code=204)

    @app.put("/styles/values")
    def set_style_value(req: StyleValueIn, store: StyleStore = Depends(get_style_store)):
        if store.get_style_source(req.styleSourceId) is None:
            raise HTTPException(404, f"Style source '{req.styleSourceId}' not found")
        key = store.set_style(req.styleSourceId, req.property, req.value, req.breakpointId)
        return {"key": key, "value": req.value}

    @app.post("/styles/upload")
    async def upload_styles(file: UploadFile = File(...),
                            store: StyleStore = Depends(get_style_store)) -> StyleUploadOut:
        """
        - Liest CSV/XLSX (Source, Property, Value, optional Breakpoint/Type/Name)
        - Legt fehlende Style-Sources an und schreibt die Einträge in den Store
        """
        try:
            data = await file.read()
            rows = load_style_table(data, file.filename)
        except Exception as e:
            logger.exception("Style table upload failed for %s", file.filename)
            raise HTTPException(status_code=400, detail=f"Upload/Parsing error: {type(e).__name__}: {e}")
        n = apply_style_rows(rows, store)
        return StyleUploadOut(rows=n, styleSources=len({r["source"] for r in rows}))

    # ---------- Prebuilts ----------
    @app.get("/prebuilts")
    def list_prebuilts(q: Optional[str] = None, limit: int = Query(100, ge=0),
                       registry: PrebuiltRegistry = Depends(get_registry)) -> List[PrebuiltOut]:
        return search_prebuilts(registry.records, q, limit)

    @app.get("/prebuilts/{record_id}")
    def get_prebuilt(record_id: str, registry: PrebuiltRegistry = Depends(get_registry)) -> PrebuiltOut:
        record = registry.get(record_id)
        if record is None:
            raise HTTPException(404, "prebuilt not found")
        return record

    @app.post("/prebuilts", status_code=201)
    async def create_prebuilt(request: Request, registry: PrebuiltRegistry = Depends(get_registry)) -> PrebuiltOut:
        req = await _read_instance_body(request, PrebuiltIn)
        # exclude_unset -> gespeicherter Baum entspricht genau dem gesendeten JSON
        instance = req.instance.model_dump(exclude_unset=True)
        try:
            return registry.add(req.name, instance)
        except ValueError as e:
            raise HTTPException(422, str(e))

    @app.patch("/prebuilts/{record_id}")
    def rename_prebuilt(record_id: str, req: PrebuiltRename,
                        registry: PrebuiltRegistry = Depends(get_registry)) -> PrebuiltOut:
        if registry.get(record_id) is None:
            raise HTTPException(404, "prebuilt not found")
        registry.rename(record_id, req.name)
        return registry.get(record_id)

    @app.put("/prebuilts/{record_id}")
    async def update_prebuilt(record_id: str, request: Request,
                              registry: PrebuiltRegistry = Depends(get_registry)) -> PrebuiltOut:
        req = await _read_instance_body(request, PrebuiltUpdate)
        instance = req.instance.model_dump(exclude_unset=True)
        try:
            record = registry.update(record_id, instance)
        except ValueError as e:
            raise HTTPException(422, str(e))
        if record is None:
            raise HTTPException(404, "prebuilt not found")
        return record

    @app.delete("/prebuilts/{record_id}", status_code=204)
    def delete_prebuilt(record_id: str, registry: PrebuiltRegistry = Depends(get_registry)):
        registry.remove(record_id)
        return Response(status_code=204)

    @app.post("/prebuilts/{record_id}/instances", status_code=201)
    def instantiate(record_id: str, registry: PrebuiltRegistry = Depends(get_registry)) -> InstantiateOut:
        result = registry.instantiate(record_id)
        if result is None:
            raise HTTPException(404, "prebuilt not found")
        return result

    @app.get("/prebuilts/{record_id}/links")
    def prebuilt_links(record_id: str,
                       registry: PrebuiltRegistry = Depends(get_registry)) -> List[InstanceLinkOut]:
        if registry.get(record_id) is None:
            raise HTTPException(404, "prebuilt not found")
        return registry.linked_instances(record_id)

    # ---------- Instanz-Links (Instanz -> Prebuilt) ----------
    @app.get("/instance-links/{instance_id}")
    def get_instance_link(instance_id: str,
                          registry: PrebuiltRegistry = Depends(get_registry)) -> InstanceLinkOut:
        link = registry.instance_link(instance_id)
        if link is None:
            raise HTTPException(404, "instance link not found")
        return link

    @app.put("/instance-links/{instance_id}")
    def put_instance_link(instance_id: str, req: InstanceLinkIn,
                          registry: PrebuiltRegistry = Depends(get_registry)) -> InstanceLinkOut:
        if not registry.link_instance(instance_id, req.prebuiltId, req.styleIdMapping):
            raise HTTPException(404, f"Prebuilt '{req.prebuiltId}' not found")
        return registry.instance_link(instance_id)

    @app.delete("/instance-links/{instance_id}", status_code=204)
    def delete_instance_link(instance_id: str, registry: PrebuiltRegistry = Depends(get_registry)):
        registry.unlink_instance(instance_id)
        return Response(status_code=204)

    # ---------- Links (UI-Markierung) ----------
    @app.get("/links")
    def links(registry: PrebuiltRegistry = Depends(get_registry)) -> List[str]:
        return registry.linked_instance_ids

    @app.get("/links/{instance_id}")
    def is_linked(instance_id: str, registry: PrebuiltRegistry = Depends(get_registry)) -> LinkOut:
        return LinkOut(instanceId=instance_id, linked=registry.is_linked(instance_id))

    @app.put("/links/{instance_id}")
    def mark_linked(instance_id: str, registry: PrebuiltRegistry = Depends(get_registry)) -> LinkOut:
        registry.mark_linked(instance_id)
        return LinkOut(instanceId=instance_id, linked=True)

    @app.delete("/links/{instance_id}")
    def unmark_linked(instance_id: str, registry: PrebuiltRegistry = Depends(get_registry)) -> LinkOut:
        registry.unmark_linked(instance_id)
        return LinkOut(instanceId=instance_id, linked=False)


app = create_app()
