"""WSGI middleware that allows requests from addresses resolved from dynamic DNS hostnames."""

__version__ = "0.1.0"