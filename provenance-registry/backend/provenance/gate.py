# provenance/gate.py
"""
Authorization checks consulted before every mutation.

The `is_*` predicates only compare against stored state. The `require_*`
guards raise the matching RegistryError so a call is rejected before any
row is touched.
"""
from sqlmodel import Session

from . import crud
from .errors import Forbidden, InvalidTarget, Unauthorized
from .models import Product, Role


def is_admin(caller: str, admin: str) -> bool:
    return caller == admin


def is_registered_in_role(s: Session, identity: str, role: Role) -> bool:
    return crud.get_actor(s, role, identity) is not None


def is_product_producer(product: Product, caller: str) -> bool:
    return product.producer == caller


def is_assigned_inspector(product: Product, caller: str) -> bool:
    return product.inspector is not None and product.inspector == caller


def is_assigned_distributor(product: Product, caller: str) -> bool:
    return product.distributor is not None and product.distributor == caller


def is_assigned_retailer(product: Product, caller: str) -> bool:
    return product.retailer is not None and product.retailer == caller


def require_admin(caller: str, admin: str):
    if not is_admin(caller, admin):
        raise Unauthorized("only the administrative authority can register actors")


def require_role(s: Session, caller: str, role: Role):
    if not is_registered_in_role(s, caller, role):
        raise Forbidden(f"caller is not a registered {role.value}")


def require_target_role(s: Session, identity: str, role: Role):
    if not is_registered_in_role(s, identity, role):
        raise InvalidTarget(f"{identity} is not a registered {role.value}")


def require_producer_of(product: Product, caller: str):
    if not is_product_producer(product, caller):
        raise Forbidden(f"caller is not the producer of product {product.id}")


def require_inspector_of(product: Product, caller: str):
    if not is_assigned_inspector(product, caller):
        raise Forbidden(f"caller is not the assigned inspector of product {product.id}")


def require_distributor_of(product: Product, caller: str):
    if not is_assigned_distributor(product, caller):
        raise Forbidden(f"caller is not the assigned distributor of product {product.id}")


def require_retailer_of(product: Product, caller: str):
    if not is_assigned_retailer(product, caller):
        raise Forbidden(f"caller is not the assigned retailer of product {product.id}")
