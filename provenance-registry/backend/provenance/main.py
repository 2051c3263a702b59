# provenance/main.py
import logging
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, Request, UploadFile, File
from fastapi.responses import JSONResponse

from .crud import make_engine, init_db
from .errors import Forbidden, RegistryError
from .identity import to_identity, verify_signed_request
from .models import Role
from .pinata import PinataError, metadata_uri, pin_file, pin_json
from .registry import ProvenanceRegistry
from .schemas import (
    ActorOut,
    ApprovalIn,
    AssignActorIn,
    CertificationIn,
    CertificationOut,
    CreateProductIn,
    EventOut,
    MetadataPinOut,
    OwnershipHistory,
    ProductBasic,
    ProductCreatedOut,
    ProductDetails,
    RegisterActorIn,
    SaleIn,
)
from .settings import Settings, get_settings
from .tasks import build_scheduler

log = logging.getLogger("registry")


def get_registry(request: Request) -> ProvenanceRegistry:
    return request.app.state.registry


async def caller_identity(
    request: Request,
    x_caller: str = Header(...),
    x_timestamp: Optional[int] = Header(None),
    x_signature: Optional[str] = Header(None),
) -> str:
    """
    Resolve the calling actor from the X-Caller header. With signed requests enabled
    the caller must also prove control of the address: personal_sign of
    "METHOD PATH TIMESTAMP keccak(body)".
    """
    settings: Settings = request.app.state.settings
    if settings.REQUIRE_SIGNED_REQUESTS:
        # multipart streams are consumed by form parsing; uploads sign an empty body
        if request.headers.get("content-type", "").startswith("multipart/"):
            body = b""
        else:
            body = await request.body()
        return verify_signed_request(
            x_caller,
            request.method,
            request.url.path,
            x_timestamp,
            x_signature,
            settings.SIGNATURE_MAX_AGE_SECONDS,
            body=body,
        )
    return to_identity(x_caller)


def create_app(settings: Optional[Settings] = None, registry: Optional[ProvenanceRegistry] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    if registry is None:
        engine = make_engine(settings.DATABASE_URL)
        registry = ProvenanceRegistry(engine, settings.ADMIN_ADDRESS)
    init_db(registry.engine)

    app = FastAPI(title="Provenance Registry")
    app.state.settings = settings
    app.state.registry = registry
    app.state.scheduler = build_scheduler(registry, settings) if settings.EXPIRY_CHECK_MINUTES > 0 else None

    @app.on_event("startup")
    def startup():
        if app.state.scheduler is not None:
            app.state.scheduler.start()
        log.info("Registry started, administrative authority %s", registry.admin)

    @app.on_event("shutdown")
    def shutdown():
        if app.state.scheduler is not None and app.state.scheduler.running:
            app.state.scheduler.shutdown(wait=False)

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(PinataError)
    async def pinata_error_handler(request: Request, exc: PinataError):
        return JSONResponse(status_code=502, content={"error": "PinataError", "detail": f"Pinata error: {exc}"})

    # ---------- actors ----------
    @app.post("/actors/{role}", response_model=ActorOut)
    def register_actor(role: Role, data: RegisterActorIn, caller: str = Depends(caller_identity),
                       reg: ProvenanceRegistry = Depends(get_registry)):
        """Grant a role to an identity. Administrative authority only."""
        return reg.register_actor(caller, role, data.identity, data.details)

    @app.get("/actors/{role}", response_model=List[ActorOut])
    def list_actors(role: Role, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.list_actors(role)

    @app.get("/actors/{role}/count")
    def count_actors(role: Role, reg: ProvenanceRegistry = Depends(get_registry)):
        return {"role": role, "count": reg.count(role)}

    @app.get("/actors/{role}/{identity}", response_model=ActorOut)
    def get_actor(role: Role, identity: str, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.get_actor(role, identity)

    @app.get("/actors/{role}/{identity}/registered")
    def is_registered(role: Role, identity: str, reg: ProvenanceRegistry = Depends(get_registry)):
        return {"role": role, "identity": to_identity(identity), "registered": reg.is_registered(role, identity)}

    # ---------- products ----------
    @app.post("/products", response_model=ProductCreatedOut)
    def create_product(data: CreateProductIn, caller: str = Depends(caller_identity),
                       reg: ProvenanceRegistry = Depends(get_registry)):
        product_id = reg.create_product(
            caller, data.name, data.batch_id, data.category, data.production_date, data.metadata_uri
        )
        return {"product_id": product_id}

    @app.post("/products/{product_id}/inspector", response_model=ProductDetails)
    def assign_inspector(product_id: int, data: AssignActorIn, caller: str = Depends(caller_identity),
                         reg: ProvenanceRegistry = Depends(get_registry)):
        reg.assign_quality_inspector(caller, product_id, data.identity)
        return reg.get_product_details(product_id)

    @app.post("/products/{product_id}/certifications", response_model=List[CertificationOut])
    def add_certification(product_id: int, data: CertificationIn, caller: str = Depends(caller_identity),
                          reg: ProvenanceRegistry = Depends(get_registry)):
        reg.add_certification(caller, product_id, data.text)
        return reg.get_certifications(product_id)

    @app.post("/products/{product_id}/approval", response_model=ProductDetails)
    def approve_quality(product_id: int, data: ApprovalIn, caller: str = Depends(caller_identity),
                        reg: ProvenanceRegistry = Depends(get_registry)):
        reg.approve_quality(caller, product_id, data.expiry_date)
        return reg.get_product_details(product_id)

    @app.post("/products/{product_id}/distributor", response_model=ProductDetails)
    def assign_distributor(product_id: int, data: AssignActorIn, caller: str = Depends(caller_identity),
                           reg: ProvenanceRegistry = Depends(get_registry)):
        reg.assign_distributor(caller, product_id, data.identity)
        return reg.get_product_details(product_id)

    @app.post("/products/{product_id}/retailer", response_model=ProductDetails)
    def assign_retailer(product_id: int, data: AssignActorIn, caller: str = Depends(caller_identity),
                        reg: ProvenanceRegistry = Depends(get_registry)):
        reg.assign_retailer(caller, product_id, data.identity)
        return reg.get_product_details(product_id)

    @app.post("/products/{product_id}/sale", response_model=ProductDetails)
    def sell_to_consumer(product_id: int, data: SaleIn, caller: str = Depends(caller_identity),
                         reg: ProvenanceRegistry = Depends(get_registry)):
        """Final sale; the buyer does not need to be registered."""
        reg.sell_to_consumer(caller, product_id, data.buyer)
        return reg.get_product_details(product_id)

    @app.get("/products/{product_id}", response_model=ProductBasic)
    def get_product(product_id: int, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.get_product_basic(product_id)

    @app.get("/products/{product_id}/details", response_model=ProductDetails)
    def get_product_details(product_id: int, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.get_product_details(product_id)

    @app.get("/products/{product_id}/history", response_model=OwnershipHistory)
    def get_history(product_id: int, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.get_ownership_history(product_id)

    @app.get("/products/{product_id}/certifications", response_model=List[CertificationOut])
    def get_certifications(product_id: int, reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.get_certifications(product_id)

    @app.get("/events", response_model=List[EventOut])
    def list_events(product_id: Optional[int] = None, limit: int = 50,
                    reg: ProvenanceRegistry = Depends(get_registry)):
        return reg.list_events(product_id=product_id, limit=limit)

    # ---------- off-registry metadata ----------
    def _require_producer(reg: ProvenanceRegistry, caller: str):
        if not reg.is_registered(Role.PRODUCER, caller):
            raise Forbidden("caller is not a registered producer")

    @app.post("/metadata", response_model=MetadataPinOut)
    def pin_metadata(data: dict, caller: str = Depends(caller_identity),
                     reg: ProvenanceRegistry = Depends(get_registry)):
        """
        Pin a product metadata document to IPFS and return the URI to pass to product creation.
        """
        _require_producer(reg, caller)
        cid = pin_json(data, metadata={"name": data.get("name", "product-metadata")}, settings=settings)
        return {"ipfs_cid": cid, "metadata_uri": metadata_uri(cid)}

    @app.post("/metadata/file", response_model=MetadataPinOut)
    async def pin_metadata_file(file: UploadFile = File(...), caller: str = Depends(caller_identity),
                                reg: ProvenanceRegistry = Depends(get_registry)):
        _require_producer(reg, caller)
        content = await file.read()
        cid = pin_file(file.filename, content, metadata={"name": file.filename}, settings=settings)
        return {"ipfs_cid": cid, "metadata_uri": metadata_uri(cid)}

    return app
