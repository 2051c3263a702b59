# provenance/models.py
from enum import Enum
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


class Role(str, Enum):
    PRODUCER = "producer"
    INSPECTOR = "inspector"
    DISTRIBUTOR = "distributor"
    RETAILER = "retailer"


class ProductStage(str, Enum):
    CREATED = "created"
    INSPECTOR_ASSIGNED = "inspector_assigned"
    APPROVED = "approved"
    DISTRIBUTOR_ASSIGNED = "distributor_assigned"
    RETAILER_ASSIGNED = "retailer_assigned"
    SOLD = "sold"


class Actor(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("role", "identity"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    role: Role = Field(index=True)
    identity: str = Field(index=True)
    details: str
    registered_at: int


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    batch_id: str
    category: str
    production_date: int
    metadata_uri: str
    producer: str = Field(index=True)
    stage: ProductStage = ProductStage.CREATED
    inspector: str | None = None
    quality_approved: bool = False
    expiry_date: int = 0
    distributor: str | None = None
    retailer: str | None = None
    current_custodian: str
    verified: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Certification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    position: int
    text: str
    inspector: str
    recorded_at: int


class CustodyTransfer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    sequence: int
    custodian: str
    timestamp: int


class RegistryEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    product_id: int | None = Field(default=None, index=True)
    actor: str
    counterparty: str | None = None
    payload: str
    event_hash: str
    timestamp: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
