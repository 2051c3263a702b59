# provenance/registry.py
"""
The provenance registry service.

Every mutation runs under one registry-wide lock and inside one database
transaction. A call either commits together with exactly one RegistryEvent
row, or raises a RegistryError and leaves nothing behind.
"""
import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

from sqlmodel import Session

from . import crud, gate
from .errors import AlreadyRegistered, NotFound, NotRegistered, RegistryError
from .identity import event_digest, to_identity
from .lifecycle import Step, next_stage
from .models import Product, Role
from .schemas import (
    ActorOut,
    CertificationOut,
    EventOut,
    OwnershipHistory,
    ProductBasic,
    ProductDetails,
)

log = logging.getLogger("registry")


class ProvenanceRegistry:
    def __init__(self, engine, admin: str, clock: Optional[Callable[[], int]] = None):
        self.engine = engine
        self.admin = to_identity(admin)
        self._clock = clock or (lambda: int(time.time()))
        self._lock = threading.RLock()

    # ---------- plumbing ----------
    @contextmanager
    def _transaction(self, operation: str):
        with self._lock:
            with Session(self.engine, expire_on_commit=False) as s:
                s.info["events"] = []
                try:
                    yield s
                    s.commit()
                except RegistryError as e:
                    s.rollback()
                    log.warning("%s rejected: %s: %s", operation, e.kind, e.reason)
                    raise
                except Exception:
                    s.rollback()
                    log.exception("%s failed", operation)
                    raise
                for ev in s.info["events"]:
                    log.info("event %s product=%s actor=%s hash=%s", ev.name, ev.product_id, ev.actor, ev.event_hash)

    @contextmanager
    def _snapshot(self):
        with self._lock:
            with Session(self.engine, expire_on_commit=False) as s:
                yield s

    def _emit(self, s: Session, name: str, actor: str, product_id: Optional[int] = None,
              counterparty: Optional[str] = None, **data):
        now = self._clock()
        payload = {
            "event": name,
            "product_id": product_id,
            "actor": actor,
            "counterparty": counterparty,
            "timestamp": now,
            **data,
        }
        ev = crud.create_event(s, {
            "name": name,
            "product_id": product_id,
            "actor": actor,
            "counterparty": counterparty,
            "payload": json.dumps(payload, sort_keys=True),
            "event_hash": event_digest(payload),
            "timestamp": now,
        })
        s.info["events"].append(ev)
        return ev

    @staticmethod
    def _load(s: Session, product_id: int) -> Product:
        product = crud.get_product(s, product_id)
        if product is None:
            raise NotFound(f"product {product_id} does not exist")
        return product

    def _transfer(self, s: Session, product: Product, to: str, now: int) -> str:
        previous = product.current_custodian
        product.current_custodian = to
        crud.append_custody(s, product.id, to, now)
        return previous

    # ---------- actor registry ----------
    def register_actor(self, caller: str, role: Role, identity: str, details: str) -> ActorOut:
        role = Role(role)
        caller = to_identity(caller)
        identity = to_identity(identity)
        with self._transaction(f"register_{role.value}") as s:
            gate.require_admin(caller, self.admin)
            if gate.is_registered_in_role(s, identity, role):
                raise AlreadyRegistered(f"{identity} is already a registered {role.value}")
            actor = crud.create_actor(s, {
                "role": role,
                "identity": identity,
                "details": details,
                "registered_at": self._clock(),
            })
            self._emit(s, f"{role.value.capitalize()}Registered", identity, details=details)
            return _actor_out(actor)

    def register_producer(self, caller: str, identity: str, details: str) -> ActorOut:
        return self.register_actor(caller, Role.PRODUCER, identity, details)

    def register_inspector(self, caller: str, identity: str, details: str) -> ActorOut:
        return self.register_actor(caller, Role.INSPECTOR, identity, details)

    def register_distributor(self, caller: str, identity: str, details: str) -> ActorOut:
        return self.register_actor(caller, Role.DISTRIBUTOR, identity, details)

    def register_retailer(self, caller: str, identity: str, details: str) -> ActorOut:
        return self.register_actor(caller, Role.RETAILER, identity, details)

    def is_registered(self, role: Role, identity: str) -> bool:
        identity = to_identity(identity)
        with self._snapshot() as s:
            return gate.is_registered_in_role(s, identity, Role(role))

    def get_details(self, role: Role, identity: str) -> str:
        return self.get_actor(role, identity).details

    def get_actor(self, role: Role, identity: str) -> ActorOut:
        role = Role(role)
        identity = to_identity(identity)
        with self._snapshot() as s:
            actor = crud.get_actor(s, role, identity)
            if actor is None:
                raise NotRegistered(f"{identity} is not a registered {role.value}")
            return _actor_out(actor)

    def count(self, role: Role) -> int:
        with self._snapshot() as s:
            return crud.count_actors(s, Role(role))

    def list_actors(self, role: Role) -> List[ActorOut]:
        with self._snapshot() as s:
            return [_actor_out(a) for a in crud.list_actors(s, Role(role))]

    # ---------- product ledger ----------
    def create_product(self, caller: str, name: str, batch_id: str, category: str,
                       production_date: int, metadata_uri: str) -> int:
        caller = to_identity(caller)
        with self._transaction("create_product") as s:
            gate.require_role(s, caller, Role.PRODUCER)
            now = self._clock()
            product_id = crud.next_product_id(s)
            crud.create_product(s, {
                "id": product_id,
                "name": name,
                "batch_id": batch_id,
                "category": category,
                "production_date": int(production_date),
                "metadata_uri": metadata_uri,
                "producer": caller,
                "current_custodian": caller,
            })
            crud.append_custody(s, product_id, caller, now)
            self._emit(s, "ProductCreated", caller, product_id=product_id, batch_id=batch_id)
            return product_id

    def assign_quality_inspector(self, caller: str, product_id: int, inspector: str) -> None:
        caller = to_identity(caller)
        inspector = to_identity(inspector)
        with self._transaction("assign_quality_inspector") as s:
            gate.require_role(s, caller, Role.PRODUCER)
            product = self._load(s, product_id)
            gate.require_producer_of(product, caller)
            gate.require_target_role(s, inspector, Role.INSPECTOR)
            stage = next_stage(product.stage, Step.ASSIGN_INSPECTOR)

            previous = product.inspector
            product.inspector = inspector
            product.stage = stage
            s.add(product)
            self._emit(s, "InspectorAssigned", caller, product_id=product.id,
                       counterparty=inspector, previous_inspector=previous)

    def add_certification(self, caller: str, product_id: int, text: str) -> None:
        caller = to_identity(caller)
        with self._transaction("add_certification") as s:
            product = self._load(s, product_id)
            gate.require_inspector_of(product, caller)
            next_stage(product.stage, Step.ADD_CERTIFICATION)

            cert = crud.append_certification(s, product.id, text, caller, self._clock())
            self._emit(s, "CertificationAdded", caller, product_id=product.id,
                       certification=text, position=cert.position)

    def approve_quality(self, caller: str, product_id: int, expiry_date: int) -> None:
        caller = to_identity(caller)
        with self._transaction("approve_quality") as s:
            product = self._load(s, product_id)
            gate.require_inspector_of(product, caller)
            stage = next_stage(product.stage, Step.APPROVE_QUALITY)

            # repeat approvals refresh the expiry date; the flag never goes back
            previous_expiry = product.expiry_date if product.quality_approved else None
            product.quality_approved = True
            product.expiry_date = int(expiry_date)
            product.stage = stage
            s.add(product)
            self._emit(s, "QualityApproved", caller, product_id=product.id, expiry_date=int(expiry_date),
                       previous_expiry_date=previous_expiry)

    def assign_distributor(self, caller: str, product_id: int, distributor: str) -> None:
        caller = to_identity(caller)
        distributor = to_identity(distributor)
        with self._transaction("assign_distributor") as s:
            gate.require_role(s, caller, Role.PRODUCER)
            product = self._load(s, product_id)
            gate.require_producer_of(product, caller)
            gate.require_target_role(s, distributor, Role.DISTRIBUTOR)
            stage = next_stage(product.stage, Step.ASSIGN_DISTRIBUTOR)

            product.distributor = distributor
            previous = self._transfer(s, product, distributor, self._clock())
            product.stage = stage
            s.add(product)
            self._emit(s, "CustodyTransferred", caller, product_id=product.id,
                       counterparty=distributor, **{"from": previous, "to": distributor})

    def assign_retailer(self, caller: str, product_id: int, retailer: str) -> None:
        caller = to_identity(caller)
        retailer = to_identity(retailer)
        with self._transaction("assign_retailer") as s:
            product = self._load(s, product_id)
            gate.require_distributor_of(product, caller)
            gate.require_target_role(s, retailer, Role.RETAILER)
            stage = next_stage(product.stage, Step.ASSIGN_RETAILER)

            product.retailer = retailer
            previous = self._transfer(s, product, retailer, self._clock())
            product.stage = stage
            s.add(product)
            self._emit(s, "CustodyTransferred", caller, product_id=product.id,
                       counterparty=retailer, **{"from": previous, "to": retailer})

    def sell_to_consumer(self, caller: str, product_id: int, buyer: str) -> None:
        caller = to_identity(caller)
        buyer = to_identity(buyer)
        with self._transaction("sell_to_consumer") as s:
            product = self._load(s, product_id)
            gate.require_retailer_of(product, caller)
            stage = next_stage(product.stage, Step.SELL)

            previous = self._transfer(s, product, buyer, self._clock())
            product.verified = product.quality_approved
            product.stage = stage
            s.add(product)
            self._emit(s, "CustodyTransferred", caller, product_id=product.id, counterparty=buyer,
                       sold=True, verified=product.verified, **{"from": previous, "to": buyer})

    # ---------- read-only accessors ----------
    def get_product_basic(self, product_id: int) -> ProductBasic:
        with self._snapshot() as s:
            product = self._load(s, product_id)
            return ProductBasic(**_basic_fields(product))

    def get_product_details(self, product_id: int) -> ProductDetails:
        with self._snapshot() as s:
            return _details(self._load(s, product_id))

    def expiring_products(self, before: int) -> List[ProductDetails]:
        """Approved, unsold products whose expiry date falls before `before`."""
        with self._snapshot() as s:
            return [_details(p) for p in crud.list_expiring_products(s, before)]

    def get_ownership_history(self, product_id: int) -> OwnershipHistory:
        with self._snapshot() as s:
            product = self._load(s, product_id)
            history = crud.custody_history(s, product.id)
            return OwnershipHistory(
                product_id=product.id,
                custodians=[h.custodian for h in history],
                timestamps=[h.timestamp for h in history],
            )

    def get_certifications(self, product_id: int) -> List[CertificationOut]:
        with self._snapshot() as s:
            product = self._load(s, product_id)
            return [
                CertificationOut(position=c.position, text=c.text, inspector=c.inspector, recorded_at=c.recorded_at)
                for c in crud.list_certifications(s, product.id)
            ]

    def product_count(self) -> int:
        with self._snapshot() as s:
            return crud.count_products(s)

    def list_events(self, product_id: Optional[int] = None, limit: int = 50) -> List[EventOut]:
        with self._snapshot() as s:
            return [
                EventOut(
                    id=ev.id,
                    name=ev.name,
                    product_id=ev.product_id,
                    actor=ev.actor,
                    counterparty=ev.counterparty,
                    payload=json.loads(ev.payload),
                    event_hash=ev.event_hash,
                    timestamp=ev.timestamp,
                )
                for ev in crud.list_events(s, product_id=product_id, limit=limit)
            ]


def _actor_out(actor) -> ActorOut:
    return ActorOut(role=actor.role, identity=actor.identity, details=actor.details,
                    registered_at=actor.registered_at)


def _basic_fields(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "batch_id": product.batch_id,
        "category": product.category,
        "producer": product.producer,
        "current_custodian": product.current_custodian,
        "quality_approved": product.quality_approved,
    }


def _details(product: Product) -> ProductDetails:
    return ProductDetails(
        **_basic_fields(product),
        metadata_uri=product.metadata_uri,
        production_date=product.production_date,
        expiry_date=product.expiry_date,
        inspector=product.inspector,
        distributor=product.distributor,
        retailer=product.retailer,
        stage=product.stage,
        verified=product.verified,
    )
