from rest_framework.authentication import BaseAuthentication

from apps.pos.services.auth import token_from_header


class Cashier:
    """The caller behind a bearer token. Identity is checked by the backend, not here."""
    is_authenticated = True
    is_anonymous = False

    def __init__(self, token):
        self.token = token

    def __str__(self):
        return f"Cashier <{self.token[:6]}...>"


class BackendTokenAuthentication(BaseAuthentication):
    """
    Accept `Authorization: Bearer <token>` and forward the token to the POS
    backend with every catalog and sales request.
    """
    keyword = 'Bearer'

    def authenticate(self, request):
        token = token_from_header(request.META.get('HTTP_AUTHORIZATION', ''))
        if not token:
            return None
        return Cashier(token), token

    def authenticate_header(self, request):
        return self.keyword
