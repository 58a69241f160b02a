"""
Domínio de Pedidos - Checkout de cursos, papers e e-books.

Este módulo contém toda a lógica de negócio do checkout, incluindo:
- Entidades (PedidoEntity, EventoStatus, ConcessaoAcesso)
- Use Cases (CriarCheckout, AplicarTransicao, ProcessarWebhook, Conciliar)
- Domain Events (PedidoCriado, PedidoConcluido, TransicaoRejeitada)
- DTOs (Input/Output Data Transfer Objects)
- Ports (Repositórios, gateway de pagamento e colaboradores)

Características do Domínio:
- Preço sempre vem do catálogo, nunca do cliente
- Transições de status controladas por tabela, sob lock do pedido
- Eventos repetidos ou fora de ordem ficam no histórico como rejeitados
- Acesso liberado exatamente uma vez por (pedido, produto)
"""

from .entities import (
    PedidoEntity,
    StatusPedido,
    StatusPagamento,
    MetodoPagamento,
    TipoProduto,
    OrigemEvento,
    ResultadoGateway,
    ProdutoRef,
    ItemPedido,
    DadosCliente,
    EventoStatus,
    ConcessaoAcesso,
)
from .events import (
    PedidoCriadoEvent,
    PedidoStatusAlteradoEvent,
    PedidoConcluidoEvent,
    TransicaoRejeitadaEvent,
    AcessoConcedidoEvent,
    FalhaConcessaoEvent,
    CobrancaDesconhecidaEvent,
)
from .dtos import (
    CriarCheckoutInputDTO,
    CheckoutOutputDTO,
    StatusPedidoOutputDTO,
    NotificacaoGateway,
    CobrancaCriada,
)
from .ports import (
    PedidoRepository,
    ConcessaoRepository,
    GatewayPagamento,
    EstrategiaTrilho,
)
from .use_cases import (
    AplicarTransicaoService,
    CriarCheckoutService,
    RetentarCobrancaService,
    ProcessarWebhookService,
    ConcederAcessoService,
    ConciliarPedidosService,
)

__all__ = [
    # Entities
    "PedidoEntity",
    "StatusPedido",
    "StatusPagamento",
    "MetodoPagamento",
    "TipoProduto",
    "OrigemEvento",
    "ResultadoGateway",
    "ProdutoRef",
    "ItemPedido",
    "DadosCliente",
    "EventoStatus",
    "ConcessaoAcesso",
    # Events
    "PedidoCriadoEvent",
    "PedidoStatusAlteradoEvent",
    "PedidoConcluidoEvent",
    "TransicaoRejeitadaEvent",
    "AcessoConcedidoEvent",
    "FalhaConcessaoEvent",
    "CobrancaDesconhecidaEvent",
    # DTOs
    "CriarCheckoutInputDTO",
    "CheckoutOutputDTO",
    "StatusPedidoOutputDTO",
    "NotificacaoGateway",
    "CobrancaCriada",
    # Ports
    "PedidoRepository",
    "ConcessaoRepository",
    "GatewayPagamento",
    "EstrategiaTrilho",
    # Use Cases
    "AplicarTransicaoService",
    "CriarCheckoutService",
    "RetentarCobrancaService",
    "ProcessarWebhookService",
    "ConcederAcessoService",
    "ConciliarPedidosService",
]
