"""
licensing/errors.py -- Exceptions raised by the key lifecycle operations.

Desktop authentication never raises for a rejected attempt; it returns a
DesktopAuthResult instead. These exceptions cover the admin and redemption
paths, where the HTTP layer maps them onto 4xx/5xx responses.
"""


class LicensingError(Exception):
    """Base class for licensing failures. str(exc) is safe to show to clients."""


class KeyGenerationError(LicensingError):
    """A batch could not be completed, e.g. repeated token collisions."""


class KeyClaimError(LicensingError):
    """A key could not be assigned to an account."""


class KeyNotFoundError(KeyClaimError):
    """The key or account named in an assignment does not exist."""
