"""
Dependency Injection Container.

Configura e gerencia todas as dependências da aplicação.
Usa dependency-injector para lazy-loading e injeção automática.

Padrões:
- Singleton: Uma instância para toda app (repositories, gateway, estratégias)
- Factory: Nova instância por chamada (services, UoW)
- Configuration: Valores das settings do Django (chaves do Asaas, limiares)

Cada service recebe o seu próprio UnitOfWork: services que chamam
outros services (checkout → emissão → transição → concessão) nunca
compartilham a mesma instância.
"""

from dependency_injector import containers, providers
from typing import Any, Dict, Optional


class Container(containers.DeclarativeContainer):
    """
    Container principal de Dependency Injection.

    Organização:
    - Configuration: settings do Django
    - Infrastructure: Event publisher, cliente e gateway do Asaas
    - Repositories: Persistência e colaboradores
    - Unit of Work: Transações
    - Services: Use Cases

    Example:
        from src.config.container import get_container

        service = get_container().criar_checkout_service()
        output = service.execute(input_dto)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    config = providers.Configuration()

    # =========================================================================
    # Infrastructure
    # =========================================================================

    event_publisher = providers.Singleton(
        lambda modo: __import__(
            'src.adapters.django_app.events.publishers',
            fromlist=['get_event_publisher']
        ).get_event_publisher(modo or 'logging'),
        modo=config.eventos.modo,
    )

    asaas_client = providers.Singleton(
        lambda api_key, ambiente, timeout: __import__(
            'src.adapters.gateways.asaas',
            fromlist=['AsaasClient']
        ).AsaasClient(
            api_key=api_key or '',
            ambiente=ambiente or 'sandbox',
            timeout=float(timeout or 15),
        ),
        api_key=config.asaas.api_key,
        ambiente=config.asaas.ambiente,
        timeout=config.asaas.timeout,
    )

    gateway_pagamento = providers.Singleton(
        lambda client, dias: __import__(
            'src.adapters.gateways.asaas',
            fromlist=['AsaasGateway']
        ).AsaasGateway(
            client=client,
            dias_vencimento_boleto=int(dias or 7),
        ),
        client=asaas_client,
        dias=config.asaas.dias_vencimento_boleto,
    )

    estrategias_webhook = providers.Singleton(
        lambda token, segredo: __import__(
            'src.adapters.gateways.estrategias',
            fromlist=['registro_estrategias']
        ).registro_estrategias(token, segredo),
        token=config.asaas.webhook_token,
        segredo=config.asaas.hmac_secret,
    )

    configuracao_conciliacao = providers.Singleton(
        lambda dados: __import__(
            'src.core.pedidos.config',
            fromlist=['ConfiguracaoConciliacao']
        ).ConfiguracaoConciliacao.from_dict(dados or {}),
        dados=config.conciliacao,
    )

    # =========================================================================
    # Repositories e colaboradores (Singleton)
    # =========================================================================

    pedido_repository = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.repositories',
            fromlist=['DjangoPedidoRepository']
        ).DjangoPedidoRepository()
    )

    concessao_repository = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.repositories',
            fromlist=['DjangoConcessaoRepository']
        ).DjangoConcessaoRepository()
    )

    catalogo = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.colaboradores',
            fromlist=['DjangoCatalogo']
        ).DjangoCatalogo()
    )

    matricula = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.colaboradores',
            fromlist=['DjangoMatricula']
        ).DjangoMatricula()
    )

    biblioteca = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.colaboradores',
            fromlist=['DjangoBiblioteca']
        ).DjangoBiblioteca()
    )

    identidade = providers.Singleton(
        lambda: __import__(
            'src.adapters.django_app.pedidos.colaboradores',
            fromlist=['DjangoIdentidade']
        ).DjangoIdentidade()
    )

    # =========================================================================
    # Unit of Work (Factory - nova instância por operação)
    # =========================================================================

    unit_of_work = providers.Factory(
        lambda event_publisher: __import__(
            'src.adapters.django_app.shared.unit_of_work',
            fromlist=['DjangoUnitOfWork']
        ).DjangoUnitOfWork(event_publisher=event_publisher),
        event_publisher=event_publisher,
    )

    # =========================================================================
    # Services / Use Cases (Factory - nova instância por chamada)
    # =========================================================================

    # Entitlement Granter
    conceder_acesso_service = providers.Factory(
        lambda pedido_repo, concessao_repo, matricula, biblioteca, uow: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ConcederAcessoService']
        ).ConcederAcessoService(
            pedido_repo=pedido_repo,
            concessao_repo=concessao_repo,
            matricula=matricula,
            biblioteca=biblioteca,
            uow=uow,
        ),
        pedido_repo=pedido_repository,
        concessao_repo=concessao_repository,
        matricula=matricula,
        biblioteca=biblioteca,
        uow=unit_of_work,
    )

    # Máquina de estados (entrada única de mudança de status)
    aplicar_transicao_service = providers.Factory(
        lambda pedido_repo, uow, concessor: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['AplicarTransicaoService']
        ).AplicarTransicaoService(
            pedido_repo=pedido_repo,
            uow=uow,
            concessor=concessor,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        concessor=conceder_acesso_service,
    )

    # Emissão / reemissão de cobrança
    retentar_cobranca_service = providers.Factory(
        lambda pedido_repo, uow, gateway, aplicar_transicao: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['RetentarCobrancaService']
        ).RetentarCobrancaService(
            pedido_repo=pedido_repo,
            uow=uow,
            gateway=gateway,
            aplicar_transicao=aplicar_transicao,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        gateway=gateway_pagamento,
        aplicar_transicao=aplicar_transicao_service,
    )

    # Checkout Orchestrator
    criar_checkout_service = providers.Factory(
        lambda pedido_repo, uow, catalogo, identidade, emissor: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['CriarCheckoutService']
        ).CriarCheckoutService(
            pedido_repo=pedido_repo,
            uow=uow,
            catalogo=catalogo,
            identidade=identidade,
            emissor=emissor,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        catalogo=catalogo,
        identidade=identidade,
        emissor=retentar_cobranca_service,
    )

    # Webhooks
    processar_webhook_service = providers.Factory(
        lambda pedido_repo, uow, estrategias, aplicar_transicao: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ProcessarWebhookService']
        ).ProcessarWebhookService(
            pedido_repo=pedido_repo,
            uow=uow,
            estrategias=estrategias,
            aplicar_transicao=aplicar_transicao,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        estrategias=estrategias_webhook,
        aplicar_transicao=aplicar_transicao_service,
    )

    # Reconciliation Poller
    conciliar_pedidos_service = providers.Factory(
        lambda pedido_repo, uow, gateway, aplicar_transicao, emissor, configuracao: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ConciliarPedidosService']
        ).ConciliarPedidosService(
            pedido_repo=pedido_repo,
            uow=uow,
            gateway=gateway,
            aplicar_transicao=aplicar_transicao,
            emissor=emissor,
            configuracao=configuracao,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        gateway=gateway_pagamento,
        aplicar_transicao=aplicar_transicao_service,
        emissor=retentar_cobranca_service,
        configuracao=configuracao_conciliacao,
    )

    reprocessar_concessoes_service = providers.Factory(
        lambda pedido_repo, concessor: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ReprocessarConcessoesService']
        ).ReprocessarConcessoesService(
            pedido_repo=pedido_repo,
            concessor=concessor,
        ),
        pedido_repo=pedido_repository,
        concessor=conceder_acesso_service,
    )

    vincular_usuario_service = providers.Factory(
        lambda pedido_repo, uow, concessor: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['VincularUsuarioService']
        ).VincularUsuarioService(
            pedido_repo=pedido_repo,
            uow=uow,
            concessor=concessor,
        ),
        pedido_repo=pedido_repository,
        uow=unit_of_work,
        concessor=conceder_acesso_service,
    )

    cancelar_pedido_service = providers.Factory(
        lambda pedido_repo, gateway, aplicar_transicao: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['CancelarPedidoService']
        ).CancelarPedidoService(
            pedido_repo=pedido_repo,
            gateway=gateway,
            aplicar_transicao=aplicar_transicao,
        ),
        pedido_repo=pedido_repository,
        gateway=gateway_pagamento,
        aplicar_transicao=aplicar_transicao_service,
    )

    # Consultas (sem UoW - leitura)
    obter_status_pedido_service = providers.Factory(
        lambda pedido_repo: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ObterStatusPedidoService']
        ).ObterStatusPedidoService(pedido_repo=pedido_repo),
        pedido_repo=pedido_repository,
    )

    listar_pedidos_service = providers.Factory(
        lambda pedido_repo: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ListarPedidosService']
        ).ListarPedidosService(pedido_repo=pedido_repo),
        pedido_repo=pedido_repository,
    )

    obter_historico_pedido_service = providers.Factory(
        lambda pedido_repo: __import__(
            'src.core.pedidos.use_cases',
            fromlist=['ObterHistoricoPedidoService']
        ).ObterHistoricoPedidoService(pedido_repo=pedido_repo),
        pedido_repo=pedido_repository,
    )


# =============================================================================
# Configuração a partir das settings
# =============================================================================

def config_from_settings() -> Dict[str, Any]:
    """Monta o dicionário do providers.Configuration a partir das settings."""
    from django.conf import settings

    return {
        'eventos': {
            'modo': getattr(settings, 'EVENT_PUBLISHER_MODE', 'logging'),
        },
        'asaas': {
            'api_key': getattr(settings, 'ASAAS_API_KEY', ''),
            'ambiente': getattr(settings, 'ASAAS_AMBIENTE', 'sandbox'),
            'timeout': getattr(settings, 'ASAAS_TIMEOUT', 15),
            'webhook_token': getattr(settings, 'ASAAS_WEBHOOK_TOKEN', ''),
            'hmac_secret': getattr(settings, 'WEBHOOK_HMAC_SECRET', ''),
            'dias_vencimento_boleto': getattr(settings, 'BOLETO_DIAS_VENCIMENTO', 7),
        },
        'conciliacao': dict(getattr(settings, 'CONCILIACAO', {})),
    }


# =============================================================================
# Container Global (Singleton)
# =============================================================================

_container: Optional[Container] = None


def get_container() -> Container:
    """
    Retorna instância global do container.

    Cria se não existir (lazy initialization), já configurado com
    as settings do Django.
    """
    global _container

    if _container is None:
        _container = Container()
        _container.config.from_dict(config_from_settings())

    return _container


def reset_container() -> None:
    """
    Reset do container (para testes).

    Permite criar novo container limpo.
    """
    global _container
    _container = None


# =============================================================================
# Testing Container
# =============================================================================

def get_testing_container(webhook_token: str = 'token-teste') -> Container:
    """
    Container para testes com implementações em memória.

    Os providers de infraestrutura são sobrescritos (override); todos os
    services passam a recebê-los sem mudar a montagem.

    Example:
        container = get_testing_container()
        container.gateway_pagamento().recusar_cartao("Sem limite")
        service = container.criar_checkout_service()
    """
    from src.core.pedidos import ports
    from src.adapters.django_app.shared.unit_of_work import InMemoryUnitOfWork
    from src.adapters.django_app.events.publishers import InMemoryEventPublisher
    from src.adapters.gateways.estrategias import registro_estrategias

    container = Container()
    container.config.from_dict({
        'eventos': {'modo': 'logging'},
        'asaas': {'webhook_token': webhook_token},
        'conciliacao': {},
    })

    container.event_publisher.override(providers.Singleton(InMemoryEventPublisher))
    container.pedido_repository.override(providers.Singleton(ports.InMemoryPedidoRepository))
    container.concessao_repository.override(providers.Singleton(ports.InMemoryConcessaoRepository))
    container.catalogo.override(providers.Singleton(ports.InMemoryCatalogo))
    container.matricula.override(providers.Singleton(ports.InMemoryMatricula))
    container.biblioteca.override(providers.Singleton(ports.InMemoryBiblioteca))
    container.identidade.override(providers.Singleton(ports.InMemoryIdentidade))
    container.gateway_pagamento.override(providers.Singleton(ports.InMemoryGatewayPagamento))
    container.estrategias_webhook.override(
        providers.Singleton(registro_estrategias, webhook_token)
    )
    container.unit_of_work.override(
        providers.Factory(InMemoryUnitOfWork, event_publisher=container.event_publisher)
    )

    return container
