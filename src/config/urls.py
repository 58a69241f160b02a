"""
URL Configuration do checkout.

Estrutura:
- /admin/ - Django Admin
- /checkout/, /webhook/<trilho>/, /pedidos/ - API de Pedidos
- /health/ - Health check
"""

from django.contrib import admin
from django.http import JsonResponse
from django.urls import path, include

urlpatterns = [
    # Django Admin
    path('admin/', admin.site.urls),

    # Pedidos (checkout, webhooks, consultas)
    path('', include('src.adapters.django_app.pedidos.urls')),

    # Health check
    path('health/', lambda r: JsonResponse({'status': 'ok'}), name='health'),
]
