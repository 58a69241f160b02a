"""
URL patterns para o domínio de Pedidos.

Endpoints API JSON:
- POST /checkout/ - Criar checkout
- GET /checkout/status/<id>/ - Status do pedido
- POST /checkout/<id>/retentar/ - Reemitir cobrança
- POST /webhook/<trilho>/ - Webhook do gateway
- GET /pedidos/ - Listar pedidos
- POST /pedidos/<id>/cancelar/ - Cancelar pedido (staff)
- GET /pedidos/<id>/historico/ - Histórico de status (staff)
"""

from django.urls import path
from . import api_views

app_name = 'pedidos'

urlpatterns = [
    # Checkout
    path('checkout/', api_views.CheckoutAPIView.as_view(), name='checkout'),
    path('checkout/status/<str:pk>/', api_views.CheckoutStatusAPIView.as_view(), name='checkout_status'),
    path('checkout/<str:pk>/retentar/', api_views.CheckoutRetentarAPIView.as_view(), name='checkout_retentar'),

    # Webhooks (um por trilho)
    path('webhook/<str:trilho>/', api_views.WebhookAPIView.as_view(), name='webhook'),

    # Pedidos
    path('pedidos/', api_views.PedidoListAPIView.as_view(), name='list'),
    path('pedidos/<str:pk>/cancelar/', api_views.PedidoCancelarAPIView.as_view(), name='cancelar'),
    path('pedidos/<str:pk>/historico/', api_views.PedidoHistoricoAPIView.as_view(), name='historico'),
]
