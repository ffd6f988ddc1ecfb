"""Location data models."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class GeoLocation:
    """
    A position fix captured by the device's positioning sensor.

    Attributes:
        lat: Latitude in degrees
        lng: Longitude in degrees
        accuracy_m: Reported horizontal accuracy in meters
        speed_mps: Optional ground speed in meters per second
        heading_deg: Optional heading in degrees
    """
    lat: float
    lng: float
    accuracy_m: float = 0.0
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoLocation":
        """
        Build a location from stored or wire data.

        Accepts the legacy ``accuracy``/``speed``/``heading`` keys as well.

        Raises:
            ValueError: If lat/lng are missing or not numeric
        """
        if data is None or "lat" not in data or "lng" not in data:
            raise ValueError("location requires lat and lng")
        speed = data.get("speed_mps", data.get("speed"))
        heading = data.get("heading_deg", data.get("heading"))
        return cls(
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            accuracy_m=float(data.get("accuracy_m", data.get("accuracy")) or 0.0),
            speed_mps=float(speed) if speed is not None else None,
            heading_deg=float(heading) if heading is not None else None,
        )


@dataclass(frozen=True)
class AddressContext:
    """
    Resolved place metadata. Advisory only.

    Attributes:
        street: Street name
        city: City
        district: District
        state: State or province
        country: Country
        postal_code: Postal code
        formatted_address: Single-line address
    """
    street: str = ""
    city: str = ""
    district: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""
    formatted_address: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AddressContext":
        return cls(
            street=data.get("street", "") or "",
            city=data.get("city", "") or "",
            district=data.get("district", "") or "",
            state=data.get("state", "") or "",
            country=data.get("country", "") or "",
            postal_code=data.get("postal_code", data.get("postalCode", "")) or "",
            formatted_address=data.get("formatted_address", data.get("formattedAddress", "")) or "",
        )


@dataclass(frozen=True)
class BoundingBox:
    """
    A latitude/longitude rectangle used to window map queries.

    Boxes crossing the antimeridian are expressed with ``west > east``.
    """
    south: float
    west: float
    north: float
    east: float

    def contains(self, location: GeoLocation) -> bool:
        if not self.south <= location.lat <= self.north:
            return False
        if self.west <= self.east:
            return self.west <= location.lng <= self.east
        return location.lng >= self.west or location.lng <= self.east
