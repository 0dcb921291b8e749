"""
Document models for the DutySync collections.

The store is schemaless, so these dataclasses are the single place where the
field names of `users`, `drivers` and `tasks` documents are spelled out.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from math import radians, cos, sin, asin, sqrt
from typing import Any, Dict, List, Optional

# Collection names
USERS = 'users'
DRIVERS = 'drivers'
TASKS = 'tasks'

# Field ownership on drivers/{id}: the lifecycle controller and the location
# reporter write disjoint sets, always with merge writes.
STATUS_FIELDS = frozenset({'active', 'activeStatus'})
LIFECYCLE_FIELDS = frozenset({'lastTripEndKm', 'totalKilometers'})
POSITION_FIELDS = frozenset({'latitude', 'longitude', 'lastUpdated', 'locationstatus'})

CONTACT_PATTERN = re.compile(r'^\d{10}$')


# Enums for better data integrity
class UserRole(Enum):
    ADMIN = 'admin'
    DRIVER = 'driver'

class TaskStatus(Enum):
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'

    @property
    def is_terminal(self):
        return self is TaskStatus.COMPLETED

class ActiveStatus(Enum):
    ACTIVE = 'active'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in-progress'

class LocationStatus(Enum):
    ONLINE = 'online'
    OFFLINE = 'offline'

class DriverOperationalState(Enum):
    """The only three (active, activeStatus) pairings allowed at rest."""
    AVAILABLE = (True, ActiveStatus.ACTIVE)
    ASSIGNED = (True, ActiveStatus.ASSIGNED)
    ON_TRIP = (False, ActiveStatus.IN_PROGRESS)

    @property
    def active(self) -> bool:
        return self.value[0]

    @property
    def active_status(self) -> ActiveStatus:
        return self.value[1]

    @property
    def fields(self) -> Dict[str, Any]:
        return {'active': self.active, 'activeStatus': self.active_status.value}

    @classmethod
    def from_fields(cls, active, active_status) -> 'DriverOperationalState':
        """Resolve a stored pairing; raises ValueError for anything off the table."""
        # Freshly provisioned records may carry neither field yet
        if active is None and active_status is None:
            return cls.AVAILABLE
        for state in cls:
            if state.active is active and state.active_status.value == active_status:
                return state
        raise ValueError(f"Invalid driver state pairing: active={active!r}, activeStatus={active_status!r}")


def _as_number(value, default=0.0):
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default

def _isoformat(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class Passenger:
    name: str = ''
    heads: int = 0
    contact: str = ''
    designation: str = ''
    department: str = ''

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Passenger':
        data = data or {}
        try:
            heads = int(data.get('heads') or 0)
        except (TypeError, ValueError):
            heads = 0
        return cls(
            name=str(data.get('name') or '').strip(),
            heads=heads,
            contact=str(data.get('contact') or '').strip(),
            designation=str(data.get('designation') or '').strip(),
            department=str(data.get('department') or '').strip(),
        )

    def validation_errors(self) -> List[str]:
        """Human-readable list of fields that need fixing, empty when valid"""
        errors = []
        if not self.name:
            errors.append('Passenger name')
        if self.heads < 1:
            errors.append('Number of heads (>=1)')
        if not self.designation:
            errors.append('Designation')
        if not self.department:
            errors.append('Department')
        if not self.contact:
            errors.append('Contact (10 digits)')
        elif not CONTACT_PATTERN.match(self.contact):
            errors.append('Contact must be 10 digits')
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'heads': self.heads,
            'contact': self.contact,
            'designation': self.designation,
            'department': self.department,
        }


@dataclass
class UserRecord:
    id: str
    role: Optional[UserRole]
    name: str = ''
    email: str = ''
    phone: str = ''
    total_kms: float = 0.0

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> 'UserRecord':
        try:
            role = UserRole(data.get('role'))
        except ValueError:
            role = None
        return cls(
            id=doc_id,
            role=role,
            name=data.get('name', ''),
            email=data.get('email', ''),
            phone=data.get('phone', ''),
            total_kms=_as_number(data.get('totalKms')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'role': self.role.value if self.role else None,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'totalKms': self.total_kms,
        }


@dataclass
class DriverRecord:
    id: str
    active: Optional[bool] = None
    active_status: Optional[str] = None
    last_trip_end_km: float = 0.0
    total_kilometers: float = 0.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_updated: Optional[datetime] = None
    location_status: str = LocationStatus.OFFLINE.value
    name: str = ''

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> 'DriverRecord':
        return cls(
            id=doc_id,
            active=data.get('active'),
            active_status=data.get('activeStatus'),
            last_trip_end_km=_as_number(data.get('lastTripEndKm')),
            total_kilometers=_as_number(data.get('totalKilometers')),
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
            last_updated=data.get('lastUpdated'),
            location_status=data.get('locationstatus') or LocationStatus.OFFLINE.value,
            name=data.get('name', ''),
        )

    @property
    def operational_state(self) -> DriverOperationalState:
        return DriverOperationalState.from_fields(self.active, self.active_status)

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'active': self.active,
            'activeStatus': self.active_status,
            'lastTripEndKm': self.last_trip_end_km,
            'totalKilometers': self.total_kilometers,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'lastUpdated': _isoformat(self.last_updated),
            'locationstatus': self.location_status,
        }


@dataclass
class TaskRecord:
    id: str
    driver_id: str
    status: TaskStatus
    passenger: Passenger = field(default_factory=Passenger)
    driver_name: str = ''
    tour_location: str = ''
    tour_date: str = ''
    tour_time: str = ''
    notes: str = ''
    opening_km: Optional[float] = None
    closing_km: Optional[float] = None
    kilometers: float = 0.0
    fuel_quantity: float = 0.0
    fuel_amount: float = 0.0
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> 'TaskRecord':
        return cls(
            id=doc_id,
            driver_id=data.get('driverId', ''),
            status=TaskStatus(data.get('status', TaskStatus.ASSIGNED.value)),
            passenger=Passenger.from_dict(data.get('passenger')),
            driver_name=data.get('driverName', ''),
            tour_location=data.get('tourLocation', ''),
            tour_date=data.get('tourDate', ''),
            tour_time=data.get('tourTime', ''),
            notes=data.get('notes', ''),
            opening_km=data.get('openingKm'),
            closing_km=data.get('closingKm'),
            kilometers=_as_number(data.get('kilometers')),
            fuel_quantity=_as_number(data.get('fuelQuantity')),
            fuel_amount=_as_number(data.get('fuelAmount')),
            created_at=data.get('createdAt'),
            started_at=data.get('startedAt'),
            completed_at=data.get('completedAt'),
        )

    @property
    def sort_key(self):
        """Newest-first ordering key; documents without createdAt sort last"""
        if isinstance(self.created_at, datetime):
            return self.created_at.timestamp()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'driverId': self.driver_id,
            'driverName': self.driver_name,
            'status': self.status.value,
            'passenger': self.passenger.to_dict(),
            'tourLocation': self.tour_location,
            'tourDate': self.tour_date,
            'tourTime': self.tour_time,
            'notes': self.notes,
            'openingKm': self.opening_km,
            'closingKm': self.closing_km,
            'kilometers': self.kilometers,
            'fuelQuantity': self.fuel_quantity,
            'fuelAmount': self.fuel_amount,
            'createdAt': _isoformat(self.created_at),
            'startedAt': _isoformat(self.started_at),
            'completedAt': _isoformat(self.completed_at),
        }


@dataclass(frozen=True)
class PositionSample:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    captured_at: Optional[datetime] = None

    @property
    def coordinates(self):
        """Return coordinates as [lat, lng] for mapping libraries"""
        return [self.latitude, self.longitude]

    def distance_from(self, other: Optional['PositionSample']) -> float:
        """Distance to another sample in meters using the Haversine formula"""
        if not other:
            return 0.0

        lat1, lon1 = radians(self.latitude), radians(self.longitude)
        lat2, lon2 = radians(other.latitude), radians(other.longitude)

        dlat = lat2 - lat1
        dlon = lon2 - lon1
        a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
        c = 2 * asin(sqrt(a))

        # Radius of earth in meters
        return c * 6371000
