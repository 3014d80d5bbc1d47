# Overview: Customer profile, saved addresses and account deletion.

"""
Account self-service

- The profile is the user record plus the saved address book.
- Saved addresses pass the same field checks as a checkout address; the
  delivery-area check is left to checkout so an address outside the
  served cities can still be kept.
- The first saved address becomes the default. Making another address
  the default clears the flag on the rest; deleting the default promotes
  the oldest remaining entry.
- Accounts that have placed orders are never deleted, since orders keep
  a foreign key to their customer.
"""

from __future__ import annotations

import logging

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, Order, SavedAddress, SessionToken, User
from ..models.auth import ROLE_CUSTOMER
from . import shipping_service


logger = logging.getLogger(__name__)

MAX_SAVED_ADDRESSES = 10


def get_profile(user: User) -> dict:
    return {
        **user.to_dict(),
        "addresses": [entry.to_dict() for entry in list_addresses(user.id)],
        "order_count": db.session.query(Order).filter_by(user_id=user.id).count(),
    }


def list_addresses(user_id: int) -> list[SavedAddress]:
    return (
        db.session.query(SavedAddress)
        .filter_by(user_id=user_id)
        .order_by(SavedAddress.is_default.desc(), SavedAddress.id)
        .all()
    )


def get_address(user_id: int, address_id: int) -> SavedAddress:
    """Another user's address id answers the same 404 as a missing one."""
    entry = db.session.query(SavedAddress).filter_by(id=address_id, user_id=user_id).first()
    if entry is None:
        raise NotFoundError("Address not found")
    return entry


def _check_label(label) -> str | None:
    if label is None:
        return None
    if not isinstance(label, str) or len(label.strip()) > 50:
        raise ValidationError("Label must be a string of at most 50 characters")
    return label.strip() or None


def _clear_default(user_id: int, keep_id: int | None = None) -> None:
    query = db.session.query(SavedAddress).filter_by(user_id=user_id, is_default=True)
    if keep_id is not None:
        query = query.filter(SavedAddress.id != keep_id)
    for entry in query.all():
        entry.is_default = False


def add_address(user_id: int, data: dict) -> SavedAddress:
    """
    Save a new address. `data` carries `address` plus optional `label`
    and `is_default`.

    Raises:
        ValidationError: bad address fields or label, or the book is full
    """
    data = data or {}
    address = shipping_service.check_address_fields(data.get("address"))
    label = _check_label(data.get("label"))

    existing = db.session.query(SavedAddress).filter_by(user_id=user_id).count()
    if existing >= MAX_SAVED_ADDRESSES:
        raise ValidationError(f"At most {MAX_SAVED_ADDRESSES} saved addresses allowed")

    make_default = existing == 0 or bool(data.get("is_default"))
    if make_default:
        _clear_default(user_id)

    entry = SavedAddress(user_id=user_id, label=label, address=address, is_default=make_default)
    db.session.add(entry)
    db.session.commit()
    return entry


def update_address(user_id: int, address_id: int, data: dict) -> SavedAddress:
    """
    Partial update. Address fields are merged over the stored ones and the
    result is re-validated as a whole.
    """
    entry = get_address(user_id, address_id)
    data = data or {}

    if "address" in data:
        patch = shipping_service.normalize_address(data["address"])
        entry.address = shipping_service.check_address_fields({**entry.address, **patch})
    if "label" in data:
        entry.label = _check_label(data["label"])
    if data.get("is_default") and not entry.is_default:
        _clear_default(user_id, keep_id=entry.id)
        entry.is_default = True

    db.session.commit()
    return entry


def delete_address(user_id: int, address_id: int) -> None:
    entry = get_address(user_id, address_id)
    was_default = entry.is_default
    db.session.delete(entry)
    db.session.flush()

    if was_default:
        successor = (
            db.session.query(SavedAddress)
            .filter_by(user_id=user_id)
            .order_by(SavedAddress.id)
            .first()
        )
        if successor is not None:
            successor.is_default = True

    db.session.commit()


def delete_account(user: User) -> None:
    """
    Remove a customer account with its sessions, cart and address book.

    Raises:
        AuthorizationError: staff and admin accounts
        ConflictError: the customer has orders
    """
    if user.role != ROLE_CUSTOMER:
        raise AuthorizationError("Only customer accounts can be deleted")

    if db.session.query(Order.id).filter_by(user_id=user.id).first():
        raise ConflictError("Cannot delete account with existing orders. Please contact support.")

    user_id = user.id
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is not None:
        db.session.delete(cart)
    db.session.query(SavedAddress).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.query(SessionToken).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.delete(user)
    db.session.commit()

    logger.info("Deleted customer account %s", user_id)
