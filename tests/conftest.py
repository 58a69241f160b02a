"""
Configurações globais do Pytest para o checkout.

Este arquivo é carregado automaticamente pelo pytest e
fornece fixtures e configurações compartilhadas:
- Django configurado com SQLite em memória (pytest-django)
- Container DI com implementações em memória
- Catálogo de exemplo e fábricas de payloads de webhook
"""

import json
import sys
from pathlib import Path

import pytest

# Raiz do projeto no path para imports src.*
sys.path.insert(0, str(Path(__file__).parent.parent))

TOKEN_WEBHOOK = 'token-teste'


def pytest_configure(config):
    """Configura Django e marcadores antes dos testes."""
    import django
    from django.conf import settings

    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: testes que exigem PostgreSQL (lock de linha real)"
    )

    if not settings.configured:
        settings.configure(
            DEBUG=True,
            SECRET_KEY='test-secret-key',
            DATABASES={
                'default': {
                    'ENGINE': 'django.db.backends.sqlite3',
                    'NAME': ':memory:',
                }
            },
            INSTALLED_APPS=[
                'django.contrib.contenttypes',
                'django.contrib.auth',
                'django.contrib.sessions',
                'src.adapters.django_app.pedidos',
            ],
            ROOT_URLCONF='src.adapters.django_app.pedidos.urls',
            MIDDLEWARE=[
                'django.contrib.sessions.middleware.SessionMiddleware',
                'django.contrib.auth.middleware.AuthenticationMiddleware',
            ],
            PASSWORD_HASHERS=['django.contrib.auth.hashers.MD5PasswordHasher'],
            DEFAULT_AUTO_FIELD='django.db.models.BigAutoField',
            USE_TZ=True,
            TIME_ZONE='America/Sao_Paulo',
            EMAIL_BACKEND='django.core.mail.backends.locmem.EmailBackend',
            DEFAULT_FROM_EMAIL='pedidos@teste.local',
            ADMINS=[('Operação', 'operacao@teste.local')],
            ASAAS_API_KEY='',
            ASAAS_AMBIENTE='sandbox',
            ASAAS_WEBHOOK_TOKEN=TOKEN_WEBHOOK,
            WEBHOOK_HMAC_SECRET='',
            BOLETO_DIAS_VENCIMENTO=7,
            BIBLIOTECA_URL_DOWNLOAD='https://download.teste.local',
            CONCILIACAO={'cartao_minutos': 15, 'pix_horas': 1, 'boleto_dias': 1, 'lote': 100},
            EVENT_PUBLISHER_MODE='logging',
        )
        django.setup()


def pytest_collection_modifyitems(config, items):
    """Pula testes de integração sem a opção --run-integration."""
    skip_integration = pytest.mark.skip(reason="Integration tests require PostgreSQL")

    for item in items:
        if item.get_closest_marker("integration"):
            if not config.getoption("--run-integration", default=False):
                item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Adiciona opções de linha de comando."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


@pytest.fixture(scope="session")
def project_root():
    """Retorna o caminho raiz do projeto."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def reset_singletons():
    """Container global limpo em cada teste."""
    from src.config.container import reset_container

    reset_container()
    yield
    reset_container()


# =============================================================================
# Container e colaboradores em memória
# =============================================================================

@pytest.fixture
def container():
    """Container DI com repositórios, gateway e colaboradores em memória."""
    from src.config.container import get_testing_container
    return get_testing_container(webhook_token=TOKEN_WEBHOOK)


@pytest.fixture
def produtos():
    """Referências dos produtos do catálogo de exemplo."""
    from src.core.pedidos.entities import ProdutoRef, TipoProduto

    return {
        'curso': ProdutoRef(TipoProduto.CURSO, 'metodologia-cientifica'),
        'paper': ProdutoRef(TipoProduto.PAPER, 'revisao-sistematica'),
        'ebook': ProdutoRef(TipoProduto.EBOOK, 'escrita-academica'),
    }


@pytest.fixture
def catalogo(container, produtos):
    """Catálogo em memória já populado."""
    catalogo = container.catalogo()
    catalogo.adicionar(produtos['curso'], 'Curso de Metodologia Científica', 19900)
    catalogo.adicionar(produtos['paper'], 'Revisão Sistemática: Guia Prático', 2990)
    catalogo.adicionar(produtos['ebook'], 'E-book Escrita Acadêmica', 4990)
    return catalogo


@pytest.fixture
def gateway(container):
    return container.gateway_pagamento()


@pytest.fixture
def pedido_repo(container):
    return container.pedido_repository()


@pytest.fixture
def concessao_repo(container):
    return container.concessao_repository()


@pytest.fixture
def publisher(container):
    return container.event_publisher()


# =============================================================================
# Dados de checkout
# =============================================================================

@pytest.fixture
def dados_cliente():
    return {
        'nome': 'Maria da Silva',
        'email': 'maria@exemplo.com.br',
        'cpf_cnpj': '123.456.789-09',
        'telefone': '(11) 98888-7777',
        'cep': '01310-100',
        'numero': '1000',
    }


@pytest.fixture
def dados_cartao():
    return {
        'titular': 'MARIA DA SILVA',
        'numero': '5162 3060 0000 0008',
        'mes_validade': '12',
        'ano_validade': '2030',
        'cvv': '318',
    }


@pytest.fixture
def checkout_body(dados_cliente, dados_cartao):
    """
    Factory de corpo JSON do POST /checkout/.

    Example:
        body = checkout_body('PIX', [('course', 'metodologia-cientifica')])
    """
    def criar(metodo='PIX', itens=None, **extras):
        itens = itens or [('course', 'metodologia-cientifica')]
        body = {
            'itens': [{'tipo': tipo, 'produto_id': produto_id} for tipo, produto_id in itens],
            'metodo_pagamento': metodo,
            'cliente': dict(dados_cliente),
        }
        if metodo == 'CREDIT_CARD':
            body['cartao'] = dict(dados_cartao)
        body.update(extras)
        return body

    return criar


@pytest.fixture
def checkout_input(checkout_body):
    """Factory de CriarCheckoutInputDTO."""
    from src.core.pedidos.dtos import CriarCheckoutInputDTO

    def criar(metodo='PIX', itens=None, usuario_id='user-1', **extras):
        return CriarCheckoutInputDTO.from_dict(
            checkout_body(metodo, itens, **extras),
            usuario_id=usuario_id,
            ip_remoto='200.100.50.25',
        )

    return criar


# =============================================================================
# Webhooks
# =============================================================================

@pytest.fixture
def cabecalhos_webhook():
    return {'asaas-access-token': TOKEN_WEBHOOK}


@pytest.fixture
def corpo_webhook():
    """
    Factory de corpo de webhook do Asaas.

    Example:
        corpo = corpo_webhook('pay_123', 'PAYMENT_RECEIVED', billing_type='PIX')
    """
    def criar(cobranca_id, evento='PAYMENT_RECEIVED', billing_type='PIX',
              status='RECEIVED', referencia=None, parcelamento=None):
        pagamento = {
            'id': cobranca_id,
            'billingType': billing_type,
            'status': status,
            'value': 199.0,
            'externalReference': referencia,
        }
        if parcelamento:
            pagamento['installment'] = parcelamento
        return json.dumps({'event': evento, 'payment': pagamento}).encode()

    return criar
