# Overview: Part catalog maintenance and non-repair stock movements (receipts, manual outs, write-offs).

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import Location, Part
from ..money import to_cents
from ..permissions import Actor, require_permission
from ..validation import clean_str, to_int
from .concurrency import atomic, run_with_retry
from .ledger_service import (
    REASON_INITIAL_STOCK,
    REASON_MANUAL_OUT,
    REASON_PURCHASE,
    REASON_WRITE_OFF,
    apply_movement,
)
from .lookup import get_or_404


def _validate_scope(manufacturer: str | None, device_model: str | None) -> None:
    if device_model and not manufacturer:
        raise ValidationError("device_model requires a manufacturer")


def create_part(
    location,
    actor: Actor,
    *,
    sku,
    name,
    manufacturer=None,
    device_model=None,
    purchase_price=0,
    sale_price=0,
    min_stock=0,
    initial_stock=0,
) -> Part:
    """
    Create a part at a location, optionally with opening stock.

    Opening stock is booked as an initial-stock movement so the ledger
    balances from the first row.
    """
    require_permission(actor, "RECEIVE_STOCK")

    sku = clean_str(sku, field="sku", required=True, max_len=64)
    name = clean_str(name, field="name", required=True, max_len=255)
    manufacturer = clean_str(manufacturer, field="manufacturer", max_len=128)
    device_model = clean_str(device_model, field="device_model", max_len=128)
    _validate_scope(manufacturer, device_model)

    purchase_cents = to_cents(purchase_price, field="purchase_price")
    sale_cents = to_cents(sale_price, field="sale_price")
    min_stock = to_int(min_stock, field="min_stock", min_value=0)
    initial_stock = to_int(initial_stock, field="initial_stock", min_value=0)

    def _op() -> Part:
        with atomic():
            loc = get_or_404(Location, location)
            if db.session.query(Part.id).filter_by(sku=sku).first():
                raise ValidationError(f"SKU '{sku}' already exists")

            part = Part(
                location_id=loc.id,
                sku=sku,
                name=name,
                manufacturer=manufacturer,
                device_model=device_model,
                on_hand=0,
                min_stock=min_stock,
                purchase_price_cents=purchase_cents,
                sale_price_cents=sale_cents,
            )
            db.session.add(part)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise ValidationError(f"SKU '{sku}' already exists") from exc

            if initial_stock:
                apply_movement(part, initial_stock, REASON_INITIAL_STOCK, actor)
            return part

    return run_with_retry(_op)


def update_part(part, actor: Actor, **fields) -> Part:
    """Edit name, prices, minimum stock or active flag. on_hand is not editable here."""
    require_permission(actor, "RECEIVE_STOCK")

    def _op() -> Part:
        with atomic():
            row = get_or_404(Part, part, lock=True)
            if "name" in fields:
                row.name = clean_str(fields["name"], field="name", required=True, max_len=255)
            if "purchase_price" in fields:
                row.purchase_price_cents = to_cents(fields["purchase_price"], field="purchase_price")
            if "sale_price" in fields:
                row.sale_price_cents = to_cents(fields["sale_price"], field="sale_price")
            if "min_stock" in fields:
                row.min_stock = to_int(fields["min_stock"], field="min_stock", min_value=0)
            if "is_active" in fields:
                row.is_active = bool(fields["is_active"])
            if "on_hand" in fields:
                raise ValidationError("on_hand can only change through stock movements")
            return row

    return run_with_retry(_op)


def receive_stock(part, quantity, actor: Actor, *, note: str | None = None):
    """Goods receipt: positive purchase movement."""
    require_permission(actor, "RECEIVE_STOCK")
    quantity = to_int(quantity, field="quantity", min_value=1)

    def _op():
        with atomic():
            return apply_movement(part, quantity, REASON_PURCHASE, actor, reason_text=note)

    return run_with_retry(_op)


def take_out(part, quantity, actor: Actor, *, reason_text, write_off: bool = False):
    """
    Manual stock-out (e.g. used for a demo device) or write-off (damaged,
    lost). Both need a reason and a privileged actor.
    """
    require_permission(actor, "WRITE_OFF_STOCK")
    quantity = to_int(quantity, field="quantity", min_value=1)
    reason_text = clean_str(reason_text, field="reason", required=True)
    reason = REASON_WRITE_OFF if write_off else REASON_MANUAL_OUT

    def _op():
        with atomic():
            return apply_movement(part, -quantity, reason, actor, reason_text=reason_text)

    return run_with_retry(_op)


def list_parts(location_id: int | None = None, *, include_inactive: bool = False) -> list[Part]:
    q = db.session.query(Part)
    if location_id is not None:
        q = q.filter(Part.location_id == location_id)
    if not include_inactive:
        q = q.filter(Part.is_active.is_(True))
    return q.order_by(Part.name.asc(), Part.id.asc()).all()


def list_low_stock_parts(location_id: int | None = None) -> list[Part]:
    """Active parts at or below their minimum stock (parts with min_stock 0 are ignored)."""
    q = db.session.query(Part).filter(
        Part.is_active.is_(True),
        Part.min_stock > 0,
        Part.on_hand <= Part.min_stock,
    )
    if location_id is not None:
        q = q.filter(Part.location_id == location_id)
    return q.order_by(Part.name.asc(), Part.id.asc()).all()
