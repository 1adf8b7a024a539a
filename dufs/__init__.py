"""Access control, HTTP authentication, request logging and options for a small file server."""

__version__ = "0.1.0"