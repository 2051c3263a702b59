# provenance/errors.py


class RegistryError(Exception):
    """Base class for rejected registry calls. Carries a kind and a human-readable reason."""

    kind = "RegistryError"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.reason}


class Unauthorized(RegistryError):
    kind = "Unauthorized"
    status_code = 401


class Forbidden(RegistryError):
    kind = "Forbidden"
    status_code = 403


class AlreadyRegistered(RegistryError):
    kind = "AlreadyRegistered"
    status_code = 409


class NotRegistered(RegistryError):
    kind = "NotRegistered"
    status_code = 404


class InvalidTarget(RegistryError):
    kind = "InvalidTarget"
    status_code = 422


class NotFound(RegistryError):
    kind = "NotFound"
    status_code = 404


class InvalidState(RegistryError):
    kind = "InvalidState"
    status_code = 409


class InvalidIdentity(RegistryError):
    kind = "InvalidIdentity"
    status_code = 400
