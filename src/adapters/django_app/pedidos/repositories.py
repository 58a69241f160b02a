"""
Repositórios Django para persistência de Pedidos.

Implementam os Ports PedidoRepository e ConcessaoRepository do Core.
São DRIVEN ADAPTERS - acionados pelo Core em resposta a operações.

Concorrência:
- travar() usa SELECT ... FOR UPDATE na linha do pedido; o lock vale
  até o fim da transação aberta pelo UnitOfWork
- Unicidade de concessão e de sequência do histórico garantidas por
  UniqueConstraint no banco
"""

from contextlib import contextmanager
from datetime import datetime
from functools import reduce
from typing import Iterator, List, Mapping, Optional, Tuple
import logging
import operator

from django.db import IntegrityError, transaction
from django.db.models import F, Q

from src.core.pedidos.entities import (
    ConcessaoAcesso,
    EventoStatus,
    MetodoPagamento,
    PedidoEntity,
    ProdutoRef,
    StatusPedido,
)
from src.core.pedidos.ports import (
    ConcessaoRepository as ConcessaoRepositoryPort,
    PedidoRepository as PedidoRepositoryPort,
)

from .mappers import ConcessaoMapper, EventoStatusMapper, PedidoMapper
from .models import ConcessaoAcessoModel, EventoStatusModel, ItemPedidoModel, PedidoModel

logger = logging.getLogger(__name__)

STATUS_AGUARDANDO = (StatusPedido.PENDENTE.value, StatusPedido.PROCESSANDO.value)


class DjangoPedidoRepository(PedidoRepositoryPort):
    """
    Implementação Django do PedidoRepository.

    Example:
        repo = DjangoPedidoRepository()

        with uow, repo.travar(pedido_id) as pedido:
            pedido.aplicar_transicao(...)
            repo.save(pedido)
    """

    def __init__(self):
        self._mapper = PedidoMapper()

    def _queryset(self):
        return PedidoModel.objects.prefetch_related('itens')

    def save(self, pedido: PedidoEntity) -> None:
        """
        Persiste pedido (create ou update).

        Itens só são gravados na criação: nunca mudam depois.
        """
        model, criado = PedidoModel.objects.update_or_create(
            id=pedido.id,
            defaults=self._mapper.campos(pedido),
        )

        if criado:
            ItemPedidoModel.objects.bulk_create(self._mapper.itens_to_models(pedido, model))
            logger.info(f"Pedido criado: {pedido.id}")
        else:
            logger.debug(f"Pedido atualizado: {pedido.id} ({pedido.status.value})")

    def get_by_id(self, pedido_id: str) -> Optional[PedidoEntity]:
        model = self._queryset().filter(id=pedido_id).first()
        return self._mapper.to_entity(model) if model else None

    def get_by_cobranca_id(self, cobranca_id: str) -> Optional[PedidoEntity]:
        if not cobranca_id:
            return None
        model = self._queryset().filter(cobranca_id=cobranca_id).first()
        return self._mapper.to_entity(model) if model else None

    @contextmanager
    def travar(self, pedido_id: str) -> Iterator[Optional[PedidoEntity]]:
        """
        Carrega o pedido com SELECT ... FOR UPDATE.

        O atomic interno vira savepoint quando já existe transação (caso
        normal, dentro do UnitOfWork).
        """
        with transaction.atomic():
            model = (
                PedidoModel.objects
                .select_for_update()
                .filter(id=pedido_id)
                .first()
            )
            yield self._mapper.to_entity(model) if model else None

    def ultimo_evento_status(self, pedido_id: str) -> Optional[EventoStatus]:
        model = (
            EventoStatusModel.objects
            .filter(pedido_id=pedido_id)
            .order_by('-sequencia')
            .first()
        )
        return EventoStatusMapper.to_entity(model) if model else None

    def adicionar_evento_status(self, evento: EventoStatus) -> None:
        EventoStatusMapper.to_model(evento).save(force_insert=True)

    def listar_eventos_status(self, pedido_id: str) -> List[EventoStatus]:
        models = EventoStatusModel.objects.filter(pedido_id=pedido_id).order_by('sequencia')
        return [EventoStatusMapper.to_entity(model) for model in models]

    def list_aguardando_confirmacao(
        self,
        cortes: Mapping[MetodoPagamento, datetime],
        limite: int,
    ) -> List[PedidoEntity]:
        """Pedidos não finalizados além do limiar do seu método."""
        if not cortes:
            return []

        por_metodo = reduce(operator.or_, (
            Q(metodo_pagamento=metodo.value, criado_em__lte=corte)
            for metodo, corte in cortes.items()
        ))

        models = (
            self._queryset()
            .filter(por_metodo, status__in=STATUS_AGUARDANDO)
            .order_by(F('verificado_em').asc(nulls_first=True), 'criado_em')
            [:limite]
        )
        return self._mapper.to_entity_list(models)

    def list_concessao_pendente(self, limite: int) -> List[PedidoEntity]:
        models = (
            self._queryset()
            .filter(status=StatusPedido.CONCLUIDO.value, concessao_pendente=True)
            .exclude(usuario_id__isnull=True)
            .exclude(usuario_id='')
            .order_by('atualizado_em')
            [:limite]
        )
        return self._mapper.to_entity_list(models)

    def listar(
        self,
        usuario_id: Optional[str] = None,
        status: Optional[StatusPedido] = None,
        offset: int = 0,
        limite: int = 20,
    ) -> Tuple[List[PedidoEntity], int]:
        queryset = self._queryset()
        if usuario_id is not None:
            queryset = queryset.filter(usuario_id=usuario_id)
        if status is not None:
            queryset = queryset.filter(status=status.value)

        total = queryset.count()
        models = queryset.order_by('-criado_em')[offset:offset + limite]
        return self._mapper.to_entity_list(models), total


class DjangoConcessaoRepository(ConcessaoRepositoryPort):
    """
    Implementação Django do ConcessaoRepository.

    A UniqueConstraint (pedido, produto_tipo, produto_id) resolve a
    corrida entre duas liberações simultâneas do mesmo pedido.
    """

    def existe(self, pedido_id: str, produto: ProdutoRef) -> bool:
        return ConcessaoAcessoModel.objects.filter(
            pedido_id=pedido_id,
            produto_tipo=produto.tipo.value,
            produto_id=produto.produto_id,
        ).exists()

    def registrar_se_ausente(self, concessao: ConcessaoAcesso) -> bool:
        try:
            with transaction.atomic():
                ConcessaoMapper.to_model(concessao).save(force_insert=True)
        except IntegrityError:
            logger.debug(
                f"Concessão já existente: pedido {concessao.pedido_id} "
                f"produto {concessao.produto}"
            )
            return False
        return True

    def list_by_pedido(self, pedido_id: str) -> List[ConcessaoAcesso]:
        models = ConcessaoAcessoModel.objects.filter(pedido_id=pedido_id).order_by('concedido_em')
        return [ConcessaoMapper.to_entity(model) for model in models]
