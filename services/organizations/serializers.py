from __future__ import annotations

from app.db.models.organizations import Address, Coordinates, Location, Organization


def coordinates_out(c: Coordinates) -> dict:
    return {"id": c.id, "x": c.x, "y": c.y}


def location_out(loc: Location) -> dict:
    return {"id": loc.id, "name": loc.name, "x": loc.x, "y": loc.y, "z": loc.z}


def address_out(a: Address) -> dict:
    return {
        "id": a.id,
        "zipCode": a.zip_code,
        "townId": a.town_id,
        "town": location_out(a.town) if a.town is not None else None,
    }


def organization_out(o: Organization) -> dict:
    return {
        "id": o.id,
        "name": o.name,
        "coordinates": coordinates_out(o.coordinates),
        "creationDate": o.creation_date.isoformat() if o.creation_date else None,
        "annualTurnover": o.annual_turnover,
        "employeesCount": o.employees_count,
        "rating": o.rating,
        "fullName": o.full_name,
        "type": o.type.value if o.type else None,
        "postalAddress": address_out(o.postal_address),
        "officialAddress": address_out(o.official_address) if o.official_address is not None else None,
        "version": o.version,
    }
