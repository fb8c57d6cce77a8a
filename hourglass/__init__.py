"""Hourglass: business-hours aware scheduling for a fleet of sites."""

from hourglass.app import Hourglass

__version__ = "0.1.0"
__all__ = ["Hourglass", "__version__"]
