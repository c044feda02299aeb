"""CampusNet: professional networking API for a university community."""

__version__ = "1.0.0"
