"""
Django Admin para o domínio de Pedidos.

Pedidos, histórico e concessões são somente leitura no admin: o status
só muda pela máquina de estados (webhook, conciliação ou cancelamento
manual via API). O catálogo de preços é editável.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import (
    ConcessaoAcessoModel,
    EventoStatusModel,
    ItemPedidoModel,
    PedidoModel,
    ProdutoCatalogoModel,
)


class SomenteLeituraMixin:
    """Bloqueia criação, edição e remoção pelo admin."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class ItemPedidoInline(SomenteLeituraMixin, admin.TabularInline):
    model = ItemPedidoModel
    fields = ['posicao', 'produto_tipo', 'produto_id', 'titulo', 'preco_centavos']
    readonly_fields = fields
    extra = 0


class EventoStatusInline(SomenteLeituraMixin, admin.TabularInline):
    model = EventoStatusModel
    fields = [
        'sequencia', 'status_anterior', 'status_novo', 'origem',
        'aceito', 'motivo_rejeicao', 'ocorrido_em',
    ]
    readonly_fields = fields
    extra = 0


@admin.register(PedidoModel)
class PedidoAdmin(SomenteLeituraMixin, admin.ModelAdmin):
    """Admin para PedidoModel."""

    list_display = [
        'id_curto',
        'metodo_pagamento',
        'status_badge',
        'status_pagamento',
        'valor_reais',
        'usuario_id',
        'concessao_pendente',
        'criado_em',
    ]

    list_filter = [
        'status',
        'metodo_pagamento',
        'concessao_pendente',
        'criado_em',
    ]

    search_fields = [
        'id',
        'cobranca_id',
        'usuario_id',
    ]

    inlines = [ItemPedidoInline, EventoStatusInline]

    ordering = ['-criado_em']

    date_hierarchy = 'criado_em'

    def id_curto(self, obj):
        """Exibe ID curto (primeiros 8 caracteres)."""
        return obj.id[:8] + '...'
    id_curto.short_description = 'ID'

    def valor_reais(self, obj):
        return f"R$ {obj.valor_total / 100:.2f}"
    valor_reais.short_description = 'Valor'

    def status_badge(self, obj):
        """Exibe status com badge colorido."""
        colors = {
            'PENDING': '#ffc107',
            'PROCESSING': '#17a2b8',
            'COMPLETED': '#28a745',
            'CANCELED': '#343a40',
        }
        color = colors.get(obj.status, '#6c757d')
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 8px; '
            'border-radius: 3px; font-size: 11px;">{}</span>',
            color,
            obj.get_status_display()
        )
    status_badge.short_description = 'Status'


@admin.register(ConcessaoAcessoModel)
class ConcessaoAcessoAdmin(SomenteLeituraMixin, admin.ModelAdmin):
    list_display = ['pedido_id', 'produto_tipo', 'produto_id', 'usuario_id', 'concedido_em']
    list_filter = ['produto_tipo']
    search_fields = ['pedido__id', 'usuario_id', 'produto_id']


@admin.register(ProdutoCatalogoModel)
class ProdutoCatalogoAdmin(admin.ModelAdmin):
    list_display = ['tipo', 'produto_id', 'titulo', 'preco_centavos', 'ativo']
    list_filter = ['tipo', 'ativo']
    search_fields = ['produto_id', 'titulo']
