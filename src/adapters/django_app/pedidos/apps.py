"""
Configuração do Django App para Pedidos.
"""

from django.apps import AppConfig


class PedidosConfig(AppConfig):
    """Configuração do app Pedidos (checkout, webhooks, conciliação)."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'src.adapters.django_app.pedidos'
    label = 'pedidos'
    verbose_name = 'Pedidos e Checkout'
