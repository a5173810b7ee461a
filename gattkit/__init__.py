"""GATT attribute database, discovery result parsing and client-side GATT procedures."""

__version__ = "0.1.0"

__all__ = ["attribute", "db", "helpers", "protocol", "results", "uuids"]