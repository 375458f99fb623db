"""
Exceptions raised by gridslam.
"""


class ConfigurationError(ValueError):
    """Invalid construction parameter (map size, scale, wheel geometry...)."""
    pass
