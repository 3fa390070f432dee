"""Errors raised while talking to Snyk and while pruning its inventory."""

from typing import Optional


class PrunerError(Exception):
    """Base class for all pruner errors."""


class AuthError(PrunerError):
    """The Snyk credential is missing, invalid or expired."""


class NetworkError(PrunerError):
    """A request to the Snyk API could not be completed."""


class OrgNotFound(PrunerError):
    """No visible organization matches the identifier given on the command line."""

    def __init__(self, identifier: str):
        super().__init__(f"Cannot find org '{identifier}'")
        self.identifier = identifier


class DeletionError(PrunerError):
    """Deleting a single project or target failed."""

    def __init__(self, item_id: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.item_id = item_id
        self.status_code = status_code
