"""cartsync - shopping cart reconciliation between a local session and a remote cart service."""

__version__ = "0.1.0"
