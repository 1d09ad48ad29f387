"""Liana: API surfaces (OpenAPI, C headers) -> unified IR -> bindings."""

__version__ = "0.1.0"
