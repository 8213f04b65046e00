"""
URL configuration for the pos app.
"""
from django.urls import include, path

app_name = 'pos'

urlpatterns = [
    # Terminal API
    path('api/', include('apps.pos.api.urls')),
]
