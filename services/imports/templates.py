from __future__ import annotations

from app.db.models.imports import ImportObjectType

_TOWN = {"name": "Springfield", "x": 10.5, "y": 20.0, "z": 3.0}

TEMPLATES: dict[ImportObjectType, list[dict]] = {
    ImportObjectType.ORGANIZATION: [
        {
            "name": "Acme",
            "fullName": "Acme Industrial Holdings",
            "annualTurnover": 1500000,
            "employeesCount": 120,
            "rating": 5,
            "type": "COMMERCIAL",
            "coordinates": {"x": 12.5, "y": 40.0},
            "postalAddress": {"zipCode": "1234567", "town": _TOWN},
            "reusePostalAddressAsOfficial": True,
        },
        {
            "name": "Globex",
            "employeesCount": 15,
            "rating": 3,
            "type": "PRIVATE_LIMITED_COMPANY",
            "coordinatesId": 1,
            "postalAddressId": 1,
            "officialAddress": {"zipCode": "7654321", "townId": 1},
        },
    ],
    ImportObjectType.COORDINATES: [{"x": 1.0, "y": 2.0}, {"x": -3.5, "y": 4.25}],
    ImportObjectType.LOCATION: [_TOWN, {"name": "Shelbyville", "x": 0.0, "y": 1.0, "z": 2.0}],
    ImportObjectType.ADDRESS: [
        {"zipCode": "1234567", "townId": 1},
        {"zipCode": "7654321", "town": {"name": "Capital City", "x": 5.0, "y": 5.0, "z": 5.0}},
    ],
}


def template_for(object_type: ImportObjectType) -> list[dict]:
    return TEMPLATES[object_type]
