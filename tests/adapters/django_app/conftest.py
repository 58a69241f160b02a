"""
Configuração pytest para testes com Django.

Django já é configurado no conftest raiz (SQLite em memória).
Este arquivo fornece:
- Catálogo gravado no banco
- Factory de PedidoModel
- Usuários comum e staff
- Container de testes no lugar do global das views
"""

import uuid
from unittest.mock import patch

import pytest


@pytest.fixture
def catalogo_db(db):
    """Catálogo de preços gravado na tabela catalogo_produtos."""
    from src.adapters.django_app.pedidos.models import ProdutoCatalogoModel

    ProdutoCatalogoModel.objects.create(
        tipo='course', produto_id='metodologia-cientifica',
        titulo='Curso de Metodologia Científica', preco_centavos=19900,
    )
    ProdutoCatalogoModel.objects.create(
        tipo='paper', produto_id='revisao-sistematica',
        titulo='Revisão Sistemática: Guia Prático', preco_centavos=2990,
    )
    ProdutoCatalogoModel.objects.create(
        tipo='ebook', produto_id='escrita-academica',
        titulo='E-book Escrita Acadêmica', preco_centavos=4990,
    )
    ProdutoCatalogoModel.objects.create(
        tipo='ebook', produto_id='fora-de-linha',
        titulo='E-book Antigo', preco_centavos=990, ativo=False,
    )


@pytest.fixture
def pedido_model_factory(db):
    """
    Factory para criar PedidoModel (com um item) para testes.

    Example:
        model = pedido_model_factory(status='PROCESSING', cobranca_id='pay_1')
    """
    from django.utils import timezone
    from src.adapters.django_app.pedidos.models import ItemPedidoModel, PedidoModel

    def create_pedido(**kwargs):
        defaults = {
            'id': str(uuid.uuid4()),
            'usuario_id': 'user-1',
            'valor_total': 19900,
            'metodo_pagamento': 'PIX',
            'status': 'PENDING',
            'status_pagamento': 'PENDING',
            'cliente': {
                'nome': 'Maria da Silva',
                'email': 'maria@exemplo.com.br',
                'cpf_cnpj': '12345678909',
            },
            'criado_em': timezone.now(),
            'atualizado_em': timezone.now(),
        }
        defaults.update(kwargs)
        model = PedidoModel.objects.create(**defaults)
        ItemPedidoModel.objects.create(
            pedido=model,
            produto_tipo='course',
            produto_id='metodologia-cientifica',
            titulo='Curso de Metodologia Científica',
            preco_centavos=defaults['valor_total'],
        )
        return model

    return create_pedido


@pytest.fixture
def usuario(db):
    from django.contrib.auth import get_user_model
    return get_user_model().objects.create_user(
        username='aluno@exemplo.com.br', email='aluno@exemplo.com.br', password='segredo123'
    )


@pytest.fixture
def staff(db):
    from django.contrib.auth import get_user_model
    return get_user_model().objects.create_user(
        username='operacao@exemplo.com.br', password='segredo123', is_staff=True
    )


@pytest.fixture
def container_views(container, catalogo):
    """Container de testes servindo as views da API."""
    with patch('src.adapters.django_app.pedidos.api_views.get_container', return_value=container):
        yield container
