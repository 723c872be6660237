"""Product catalog maintenance."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, List, Optional

from . import data_manager, log
from .core_logic import (
    RuntimeContext,
    Session,
    cached_rows,
    generate_document_id,
    invalidate_cache,
    require_nonnegative_money,
    require_text,
    to_money,
)
from .errors import NotFoundError, ValidationError
from .permissions import Capability, require_capability

PRODUCTS = data_manager.PRODUCTS_SHEET


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    """Return catalog products in sheet order.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        include_inactive (bool): When ``True`` withdrawn products are listed
            too. Clients only ever see active products.

    Returns:
        list[data_manager.ProductRow]: Copy of the cached products.
    """

    products = cached_rows(context, PRODUCTS, data_manager.deserialize_product)
    if include_inactive:
        return products
    return [product for product in products if product.is_active]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id.

    Raises:
        NotFoundError: If ``product_id`` is unknown.
    """

    for product in list_products(context, include_inactive=True):
        if product.product_id == product_id:
            return product
    log.warning("Product lookup failed for id '%s'", product_id)
    raise NotFoundError(f"Unknown product id: {product_id}")


def find_product_by_code(context: RuntimeContext, code: str) -> Optional[data_manager.ProductRow]:
    wanted = (code or "").strip().upper()
    for product in list_products(context, include_inactive=True):
        if product.code.upper() == wanted:
            return product
    return None


def add_product(
    context: RuntimeContext,
    session: Session,
    *,
    code: str,
    description: str,
    price: Any,
    group: str = "",
) -> data_manager.ProductRow:
    """Add a product to the catalog.

    Raises:
        PermissionDeniedError: If the session cannot manage products.
        ValidationError: For blank code/description, a negative price or a
            code already in use.
    """

    require_capability(session, Capability.MANAGE_ALL_PRODUCTS)
    code = require_text(code, label="Product code").upper()
    description = require_text(description, label="Product description")
    amount = to_money(price)
    require_nonnegative_money(amount, label="Price")
    if find_product_by_code(context, code) is not None:
        log.warning("Product code '%s' already exists", code)
        raise ValidationError(f"Product code already exists: {code}")

    product = data_manager.ProductRow(
        product_id=generate_document_id(prefix="P"),
        code=code,
        description=description,
        group=(group or "").strip(),
        price=amount,
        is_active=True,
    )
    data_manager.create_document(context.workbook, PRODUCTS, data_manager.serialize_product(product))
    invalidate_cache(context, PRODUCTS)
    log.info("Added product '%s' (%s) at %s", product.product_id, code, amount)
    return product


def set_product_active(
    context: RuntimeContext,
    session: Session,
    product_id: str,
    is_active: bool,
) -> data_manager.ProductRow:
    """Withdraw a product from (or return it to) the catalog."""

    require_capability(session, Capability.MANAGE_ALL_PRODUCTS)
    product = get_product(context, product_id)
    data_manager.update_document(context.workbook, PRODUCTS, product_id, {"IsActive": bool(is_active)})
    invalidate_cache(context, PRODUCTS)
    log.info("Product '%s' is_active set to %s", product_id, bool(is_active))
    return replace(product, is_active=bool(is_active))


def update_product_price(
    context: RuntimeContext,
    session: Session,
    product_id: str,
    price: Any,
) -> data_manager.ProductRow:
    """Change a product's catalog price. Existing orders keep their snapshot."""

    require_capability(session, Capability.MANAGE_ALL_PRODUCTS)
    product = get_product(context, product_id)
    amount = to_money(price)
    require_nonnegative_money(amount, label="Price")
    data_manager.update_document(context.workbook, PRODUCTS, product_id, {"Price": amount})
    invalidate_cache(context, PRODUCTS)
    log.info("Product '%s' price changed from %s to %s", product_id, product.price, amount)
    return replace(product, price=Decimal(amount))
