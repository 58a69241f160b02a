"""
Mappers para conversão entre Entities (Core) e Models (Django).

Responsabilidades:
- PedidoEntity ⇄ PedidoModel (+ ItemPedidoModel)
- EventoStatus ⇄ EventoStatusModel
- ConcessaoAcesso ⇄ ConcessaoAcessoModel

Mappers são stateless e não contêm lógica de negócio.
"""

from typing import Any, Dict, Iterable, List

from src.core.pedidos.entities import (
    ConcessaoAcesso,
    DadosCliente,
    EventoStatus,
    ItemPedido,
    MetodoPagamento,
    OrigemEvento,
    PedidoEntity,
    ProdutoRef,
    ResultadoGateway,
    StatusPagamento,
    StatusPedido,
    TipoProduto,
)

from .models import (
    ConcessaoAcessoModel,
    EventoStatusModel,
    ItemPedidoModel,
    PedidoModel,
)


class PedidoMapper:
    """
    Mapper para conversão entre PedidoEntity e PedidoModel.

    - campos(): Entity → dict de campos do model (para update_or_create)
    - itens_to_models(): itens do pedido → ItemPedidoModel (sem salvar)
    - to_entity(): Model → Entity
    """

    @staticmethod
    def campos(entity: PedidoEntity) -> Dict[str, Any]:
        """Campos mutáveis e imutáveis do pedido, exceto o id."""
        return {
            'usuario_id': entity.usuario_id,
            'valor_total': entity.valor_total,
            'metodo_pagamento': entity.metodo_pagamento.value,
            'status': entity.status.value,
            'status_pagamento': entity.status_pagamento.value,
            'cobranca_id': entity.cobranca_id,
            'cliente': entity.cliente.to_dict() if entity.cliente else {},
            'parcelas': entity.parcelas,
            'pix_copia_e_cola': entity.pix_copia_e_cola,
            'pix_qr_code': entity.pix_qr_code,
            'pix_expira_em': entity.pix_expira_em,
            'boleto_url': entity.boleto_url,
            'boleto_codigo_barras': entity.boleto_codigo_barras,
            'motivo_recusa': entity.motivo_recusa,
            'concessao_pendente': entity.concessao_pendente,
            'verificado_em': entity.verificado_em,
            'criado_em': entity.criado_em,
            'atualizado_em': entity.atualizado_em,
        }

    @staticmethod
    def itens_to_models(entity: PedidoEntity, model: PedidoModel) -> List[ItemPedidoModel]:
        return [
            ItemPedidoModel(
                pedido=model,
                posicao=posicao,
                produto_tipo=item.produto.tipo.value,
                produto_id=item.produto.produto_id,
                titulo=item.titulo,
                preco_centavos=item.preco_centavos,
            )
            for posicao, item in enumerate(entity.itens)
        ]

    @staticmethod
    def to_entity(model: PedidoModel) -> PedidoEntity:
        """
        Converte PedidoModel (com itens) para PedidoEntity.

        Bypassa o factory .criar(): os dados já foram validados na
        criação original. O __post_init__ ainda confere a soma dos itens.
        """
        itens = tuple(
            ItemPedido(
                produto=ProdutoRef(TipoProduto(item.produto_tipo), item.produto_id),
                titulo=item.titulo,
                preco_centavos=item.preco_centavos,
            )
            for item in sorted(model.itens.all(), key=lambda i: i.posicao)
        )

        cliente = DadosCliente(**model.cliente) if model.cliente else None

        return PedidoEntity(
            id=model.id,
            usuario_id=model.usuario_id,
            itens=itens,
            valor_total=model.valor_total,
            metodo_pagamento=MetodoPagamento(model.metodo_pagamento),
            status=StatusPedido(model.status),
            status_pagamento=StatusPagamento(model.status_pagamento),
            cobranca_id=model.cobranca_id,
            cliente=cliente,
            parcelas=model.parcelas,
            pix_copia_e_cola=model.pix_copia_e_cola,
            pix_qr_code=model.pix_qr_code,
            pix_expira_em=model.pix_expira_em,
            boleto_url=model.boleto_url,
            boleto_codigo_barras=model.boleto_codigo_barras,
            motivo_recusa=model.motivo_recusa,
            concessao_pendente=model.concessao_pendente,
            verificado_em=model.verificado_em,
            criado_em=model.criado_em,
            atualizado_em=model.atualizado_em,
        )

    @classmethod
    def to_entity_list(cls, models: Iterable[PedidoModel]) -> List[PedidoEntity]:
        return [cls.to_entity(model) for model in models]


class EventoStatusMapper:
    """Mapper para o histórico de status (append-only)."""

    @staticmethod
    def to_model(entity: EventoStatus) -> EventoStatusModel:
        return EventoStatusModel(
            id=entity.id,
            pedido_id=entity.pedido_id,
            sequencia=entity.sequencia,
            status_anterior=entity.status_anterior.value,
            status_novo=entity.status_novo.value,
            origem=entity.origem.value,
            aceito=entity.aceito,
            motivo_rejeicao=entity.motivo_rejeicao,
            resultado_gateway=entity.resultado_gateway.value if entity.resultado_gateway else None,
            payload_bruto=entity.payload_bruto,
            ocorrido_em=entity.ocorrido_em,
        )

    @staticmethod
    def to_entity(model: EventoStatusModel) -> EventoStatus:
        return EventoStatus(
            id=model.id,
            pedido_id=model.pedido_id,
            sequencia=model.sequencia,
            status_anterior=StatusPedido(model.status_anterior),
            status_novo=StatusPedido(model.status_novo),
            origem=OrigemEvento(model.origem),
            aceito=model.aceito,
            motivo_rejeicao=model.motivo_rejeicao,
            resultado_gateway=(
                ResultadoGateway(model.resultado_gateway) if model.resultado_gateway else None
            ),
            payload_bruto=dict(model.payload_bruto or {}),
            ocorrido_em=model.ocorrido_em,
        )


class ConcessaoMapper:
    """Mapper para concessões de acesso."""

    @staticmethod
    def to_model(entity: ConcessaoAcesso) -> ConcessaoAcessoModel:
        return ConcessaoAcessoModel(
            id=entity.id,
            pedido_id=entity.pedido_id,
            produto_tipo=entity.produto.tipo.value,
            produto_id=entity.produto.produto_id,
            usuario_id=entity.usuario_id,
            concedido_em=entity.concedido_em,
        )

    @staticmethod
    def to_entity(model: ConcessaoAcessoModel) -> ConcessaoAcesso:
        return ConcessaoAcesso(
            id=model.id,
            pedido_id=model.pedido_id,
            produto=ProdutoRef(TipoProduto(model.produto_tipo), model.produto_id),
            usuario_id=model.usuario_id,
            concedido_em=model.concedido_em,
        )
