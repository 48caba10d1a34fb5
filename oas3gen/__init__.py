"""OpenAPI 3.0 to Go HTTP server scaffold generator."""

__version__ = "0.1.0"
