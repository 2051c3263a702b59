# provenance/crud.py

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, select, create_engine
from provenance.models import (
    Actor,
    Certification,
    CustodyTransfer,
    Product,
    ProductStage,
    RegistryEvent,
    Role,
)


# ---------- Database Setup ----------
def make_engine(database_url: str, echo: bool = False):
    """Create an engine; SQLite connections are shared across the server's worker threads."""
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def init_db(engine):
    """Initialize all SQLModel tables."""
    SQLModel.metadata.create_all(engine)


# ---------- ACTOR REGISTRY ----------
def get_actor(s: Session, role: Role, identity: str) -> Optional[Actor]:
    q = select(Actor).where(Actor.role == role, Actor.identity == identity)
    return s.exec(q).first()


def create_actor(s: Session, obj: dict) -> Actor:
    actor = Actor(**obj)
    s.add(actor)
    s.flush()
    return actor


def list_actors(s: Session, role: Role) -> List[Actor]:
    """Members of one role table in registration order."""
    q = select(Actor).where(Actor.role == role).order_by(Actor.id)
    return s.exec(q).all()


def count_actors(s: Session, role: Role) -> int:
    q = select(func.count()).select_from(Actor).where(Actor.role == role)
    return s.exec(q).one()


# ---------- PRODUCT LEDGER ----------
def get_product(s: Session, product_id: int) -> Optional[Product]:
    """Resolve a product; id 0 (and anything below) never resolves."""
    if product_id is None or product_id <= 0:
        return None
    return s.get(Product, product_id)


def next_product_id(s: Session) -> int:
    current = s.exec(select(func.max(Product.id))).one()
    return (current or 0) + 1


def count_products(s: Session) -> int:
    return s.exec(select(func.count()).select_from(Product)).one()


def create_product(s: Session, obj: dict) -> Product:
    product = Product(**obj)
    s.add(product)
    s.flush()
    return product


def append_certification(s: Session, product_id: int, text: str, inspector: str, recorded_at: int) -> Certification:
    position = s.exec(
        select(func.count()).select_from(Certification).where(Certification.product_id == product_id)
    ).one()
    cert = Certification(
        product_id=product_id,
        position=position,
        text=text,
        inspector=inspector,
        recorded_at=recorded_at,
    )
    s.add(cert)
    s.flush()
    return cert


def list_certifications(s: Session, product_id: int) -> List[Certification]:
    q = select(Certification).where(Certification.product_id == product_id).order_by(Certification.position)
    return s.exec(q).all()


def append_custody(s: Session, product_id: int, custodian: str, timestamp: int) -> CustodyTransfer:
    sequence = s.exec(
        select(func.count()).select_from(CustodyTransfer).where(CustodyTransfer.product_id == product_id)
    ).one()
    entry = CustodyTransfer(product_id=product_id, sequence=sequence, custodian=custodian, timestamp=timestamp)
    s.add(entry)
    s.flush()
    return entry


def custody_history(s: Session, product_id: int) -> List[CustodyTransfer]:
    q = select(CustodyTransfer).where(CustodyTransfer.product_id == product_id).order_by(CustodyTransfer.sequence)
    return s.exec(q).all()


def list_expiring_products(s: Session, before: int) -> List[Product]:
    """Approved, unsold products whose expiry date falls before `before`."""
    q = select(Product).where(
        Product.quality_approved == True,
        Product.stage != ProductStage.SOLD,
        Product.expiry_date < before,
    ).order_by(Product.expiry_date)
    return s.exec(q).all()


# ---------- EVENTS ----------
def create_event(s: Session, obj: dict) -> RegistryEvent:
    """Record a notification for the audit trail."""
    ev = RegistryEvent(**obj)
    s.add(ev)
    s.flush()
    return ev


def list_events(s: Session, product_id: Optional[int] = None, limit: int = 50) -> List[RegistryEvent]:
    """List events in emission order, optionally for one product."""
    q = select(RegistryEvent)
    if product_id is not None:
        q = q.where(RegistryEvent.product_id == product_id)
    q = q.order_by(RegistryEvent.id).limit(limit)
    return s.exec(q).all()


def count_events(s: Session) -> int:
    return s.exec(select(func.count()).select_from(RegistryEvent)).one()
