"""
Error types raised by the registration package.

Each error also derives from the closest built-in exception so callers that
only know about ValueError / OSError / RuntimeError keep working.
"""


class RegistrationError(Exception):
    """Base class for all registration errors."""


class ConfigurationError(RegistrationError, ValueError):
    """Invalid configuration (e.g. non-positive dof, empty swarm)."""


class LoadError(RegistrationError, OSError):
    """A point cloud file is missing, unsupported or corrupt."""


class DegenerateGeometryError(RegistrationError, ValueError):
    """Source or target cloud cannot be registered (empty or malformed)."""


class PreconditionViolation(RegistrationError, RuntimeError):
    """A swarm method was called in the wrong lifecycle state."""
