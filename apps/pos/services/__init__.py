"""
Services the POS engine talks to: catalog, sales recording and credentials.
"""
from .auth import CredentialProvider
from .base import BaseCatalogService, BaseSalesService, CheckoutResult
from .backend import get_backend_services

__all__ = [
    'CredentialProvider',
    'BaseCatalogService',
    'BaseSalesService',
    'CheckoutResult',
    'get_backend_services',
]
