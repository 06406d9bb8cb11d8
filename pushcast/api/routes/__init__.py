from . import admin, devices, notifications

__all__ = ["admin", "devices", "notifications"]
