# errors.py - Domain exceptions, mapped to HTTP responses in main.py
from typing import Optional


class IllegalAccessError(Exception):
    """Raised when a user attempts an operation they are not entitled to.

    Maps to HTTP 403.
    """


class InvalidStatusError(Exception):
    """Raised for an unknown task status or a disallowed status progression.

    Maps to HTTP 400.
    """

    def __init__(self, current: Optional[int], requested: int) -> None:
        self.current = current
        self.requested = requested
        if current is None:
            msg = f"Invalid task status {requested}"
        else:
            msg = f"Task status cannot change from {current} to {requested}"
        super().__init__(msg)


class NotFoundError(Exception):
    """Raised when a write targets a parent object that does not exist.

    Maps to HTTP 404. Plain reads return None instead of raising.
    """

    def __init__(self, resource: str, resource_id=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(msg + " not found")
