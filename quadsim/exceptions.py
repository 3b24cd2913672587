"""Exceptions raised by the quadrotor simulator."""


class QuadSimError(Exception):
    """Base class for simulator errors."""


class ConfigurationError(QuadSimError):
    """Fatal startup error: invalid rates, missing constants or a bad config file."""
