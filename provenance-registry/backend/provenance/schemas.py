# provenance/schemas.py
from pydantic import BaseModel, Field
from typing import List, Optional

from .models import ProductStage, Role


# ---------- request bodies ----------
class RegisterActorIn(BaseModel):
    identity: str
    details: str


class CreateProductIn(BaseModel):
    name: str
    batch_id: str
    category: str
    production_date: int
    metadata_uri: str = ""


class AssignActorIn(BaseModel):
    identity: str


class CertificationIn(BaseModel):
    text: str = Field(min_length=1)


class ApprovalIn(BaseModel):
    expiry_date: int


class SaleIn(BaseModel):
    buyer: str


# ---------- responses ----------
class ActorOut(BaseModel):
    role: Role
    identity: str
    details: str
    registered_at: int


class ProductCreatedOut(BaseModel):
    product_id: int


class ProductBasic(BaseModel):
    id: int
    name: str
    batch_id: str
    category: str
    producer: str
    current_custodian: str
    quality_approved: bool


class ProductDetails(ProductBasic):
    metadata_uri: str
    production_date: int
    expiry_date: int
    inspector: Optional[str]
    distributor: Optional[str]
    retailer: Optional[str]
    stage: ProductStage
    verified: bool


class OwnershipHistory(BaseModel):
    product_id: int
    custodians: List[str]
    timestamps: List[int]


class CertificationOut(BaseModel):
    position: int
    text: str
    inspector: str
    recorded_at: int


class EventOut(BaseModel):
    id: int
    name: str
    product_id: Optional[int]
    actor: str
    counterparty: Optional[str]
    payload: dict
    event_hash: str
    timestamp: int


class MetadataPinOut(BaseModel):
    ipfs_cid: str
    metadata_uri: str
