"""
Domain exceptions raised by the service layer.

Each carries the HTTP status and a machine-readable code so that a single
handler in ``app.main`` can render them as ``{"detail": ..., "code": ...}``.
"""
from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "domain_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} with id {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_state"


class DriverUnavailableError(InvalidStateError):
    code = "driver_unavailable"

    def __init__(self, driver_id: int):
        super().__init__(f"Driver with id {driver_id} is not available")
        self.driver_id = driver_id


class ForbiddenError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NoDriversAvailableError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "no_drivers_available"

    def __init__(self, max_radius_km: float):
        super().__init__(f"No available drivers found within {max_radius_km:g} km")
        self.max_radius_km = max_radius_km


class ValidationError(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class InvalidCoordinateError(ValidationError):
    code = "invalid_coordinate"

    def __init__(self, latitude: float, longitude: float):
        super().__init__(f"Invalid latitude or longitude: ({latitude}, {longitude})")
        self.latitude = latitude
        self.longitude = longitude


class InvalidFareError(ValidationError):
    code = "invalid_fare"
