"""wifimgr - multi-vendor WiFi cache, diff/apply and rollback engine."""

__version__ = "0.1.0"
