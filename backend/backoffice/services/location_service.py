# Overview: Locations (stores, warehouses) within an organization.

from __future__ import annotations

from ..extensions import db
from ..models import Location
from .audit_service import append_event


class LocationError(Exception):
    """Raised when location operations fail."""
    pass


def require_location(org_id: int, location_id: int, *, active_only: bool = False) -> Location:
    """Fetch a location and enforce that it belongs to the organization."""
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or location.org_id != org_id:
        raise LocationError(f"Location {location_id} not found")
    if active_only and not location.is_active:
        raise LocationError(f"Location {location.name} is inactive")
    return location


def get_main_location(org_id: int) -> Location | None:
    return db.session.query(Location).filter_by(org_id=org_id, is_main=True).first()


def create_location(
    *,
    org_id: int,
    name: str,
    address: str | None = None,
    is_main: bool = False,
    actor_user_id: int | None = None,
) -> Location:
    name = (name or "").strip()
    if not name:
        raise LocationError("Location name is required")
    if db.session.query(Location.id).filter_by(org_id=org_id, name=name).first():
        raise LocationError(f"A location named '{name}' already exists")

    # First location of an org is always the main one
    if get_main_location(org_id) is None:
        is_main = True
    elif is_main:
        _clear_main(org_id)

    location = Location(org_id=org_id, name=name, address=address, is_main=is_main)
    db.session.add(location)
    db.session.flush()

    append_event(
        org_id=org_id,
        location_id=location.id,
        event_type="location.created",
        entity_type="location",
        entity_id=location.id,
        actor_user_id=actor_user_id,
    )
    return location


def update_location(
    location_id: int,
    org_id: int,
    *,
    name: str | None = None,
    address: str | None = None,
    is_active: bool | None = None,
) -> Location:
    location = require_location(org_id, location_id)
    if name is not None:
        name = name.strip()
        clash = db.session.query(Location.id).filter(
            Location.org_id == org_id, Location.name == name, Location.id != location_id
        ).first()
        if not name or clash:
            raise LocationError("Location name is empty or already taken")
        location.name = name
    if address is not None:
        location.address = address
    if is_active is not None:
        if not is_active and location.is_main:
            raise LocationError("The main location cannot be deactivated")
        location.is_active = is_active
    db.session.flush()
    return location


def _clear_main(org_id: int) -> None:
    db.session.query(Location).filter_by(org_id=org_id, is_main=True).update({"is_main": False})


def set_main_location(location_id: int, org_id: int) -> Location:
    """Exactly one main location per organization."""
    location = require_location(org_id, location_id, active_only=True)
    _clear_main(org_id)
    location.is_main = True
    db.session.flush()
    return location


def list_locations(org_id: int, *, active_only: bool = True) -> list[Location]:
    q = db.session.query(Location).filter(Location.org_id == org_id)
    if active_only:
        q = q.filter(Location.is_active.is_(True))
    return q.order_by(Location.is_main.desc(), Location.name).all()
