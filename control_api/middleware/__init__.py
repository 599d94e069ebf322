"""Middleware for the control API."""

from control_api.middleware.error_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
