"""
DhanSetu HTTP API.
"""
from .app import create_app
from .container import GatewayServices, build_services

__all__ = ["create_app", "GatewayServices", "build_services"]
