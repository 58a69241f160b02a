"""
Django Models para o domínio de Pedidos.

Estes models são ADAPTERS - implementam a persistência para as
entidades de domínio definidas em src/core/pedidos/entities.py.

IMPORTANTE:
- Models NÃO contêm lógica de negócio
- Lógica de negócio fica nas Entities do Core
- Models são mapeados para/de Entities via Mappers
- Pedidos nunca são apagados (FKs com PROTECT)

Tabelas:
- PedidoModel / ItemPedidoModel: Pedido e itens com preço congelado
- EventoStatusModel: Histórico append-only de transições
- ConcessaoAcessoModel: Acesso liberado por (pedido, produto)
- ProdutoCatalogoModel: Snapshot de preços do catálogo
- MatriculaModel / LiberacaoDownloadModel: Acessos dos colaboradores
"""

from django.db import models
from django.utils import timezone


class StatusPedidoChoices(models.TextChoices):
    """Espelha StatusPedido do Core."""
    PENDENTE = 'PENDING', 'Pendente'
    PROCESSANDO = 'PROCESSING', 'Processando'
    CONCLUIDO = 'COMPLETED', 'Concluído'
    CANCELADO = 'CANCELED', 'Cancelado'


class StatusPagamentoChoices(models.TextChoices):
    """Espelha StatusPagamento do Core."""
    PENDENTE = 'PENDING', 'Pendente'
    PROCESSANDO = 'PROCESSING', 'Processando'
    CONFIRMADO = 'CONFIRMED', 'Confirmado'
    VENCIDO = 'OVERDUE', 'Vencido'
    ESTORNADO = 'REFUNDED', 'Estornado'
    FALHOU = 'FAILED', 'Falhou'
    CANCELADO = 'CANCELED', 'Cancelado'


class MetodoPagamentoChoices(models.TextChoices):
    CARTAO_CREDITO = 'CREDIT_CARD', 'Cartão de crédito'
    PIX = 'PIX', 'PIX'
    BOLETO = 'BOLETO', 'Boleto'


class TipoProdutoChoices(models.TextChoices):
    CURSO = 'course', 'Curso'
    PAPER = 'paper', 'Paper'
    EBOOK = 'ebook', 'E-book'


class OrigemEventoChoices(models.TextChoices):
    WEBHOOK = 'webhook', 'Webhook'
    CONCILIACAO = 'poll', 'Conciliação'
    RESPOSTA_SINCRONA = 'sync-response', 'Resposta síncrona'
    MANUAL = 'manual', 'Manual'


class PedidoModel(models.Model):
    """
    Model Django para persistência de Pedidos.

    Fields:
        id: UUID gerado pela Entity
        usuario_id: Dono do pedido (nulo em checkout de visitante)
        valor_total: Soma dos itens em centavos
        cobranca_id: Referência da cobrança no gateway (única)
        cliente: Dados de cobrança do comprador (JSON)
        concessao_pendente: Pago, com acesso ainda não liberado
        verificado_em: Última consulta da conciliação
    """

    id = models.CharField(
        max_length=36,
        primary_key=True,
        editable=False,
        help_text="UUID único do pedido"
    )

    usuario_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID do usuário dono do pedido"
    )

    valor_total = models.PositiveIntegerField(
        help_text="Valor total em centavos"
    )

    metodo_pagamento = models.CharField(
        max_length=20,
        choices=MetodoPagamentoChoices.choices,
        help_text="Trilho de pagamento"
    )

    status = models.CharField(
        max_length=20,
        choices=StatusPedidoChoices.choices,
        default=StatusPedidoChoices.PENDENTE,
        db_index=True,
        help_text="Estado do pedido"
    )

    status_pagamento = models.CharField(
        max_length=20,
        choices=StatusPagamentoChoices.choices,
        default=StatusPagamentoChoices.PENDENTE,
        help_text="Situação do pagamento no gateway"
    )

    cobranca_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="ID da cobrança no gateway"
    )

    cliente = models.JSONField(
        default=dict,
        help_text="Dados de cobrança do comprador"
    )

    parcelas = models.PositiveSmallIntegerField(
        default=1,
        help_text="Parcelas do cartão"
    )

    # Dados devolvidos pelo gateway
    pix_copia_e_cola = models.TextField(null=True, blank=True)
    pix_qr_code = models.TextField(null=True, blank=True)
    pix_expira_em = models.DateTimeField(null=True, blank=True)
    boleto_url = models.URLField(max_length=500, null=True, blank=True)
    boleto_codigo_barras = models.CharField(max_length=100, null=True, blank=True)
    motivo_recusa = models.CharField(max_length=500, null=True, blank=True)

    concessao_pendente = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Pedido pago com acessos ainda não liberados"
    )

    verificado_em = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Última verificação da conciliação"
    )

    criado_em = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Data/hora de criação"
    )

    atualizado_em = models.DateTimeField(
        default=timezone.now,
        help_text="Data/hora da última alteração"
    )

    class Meta:
        db_table = 'pedidos'
        verbose_name = 'Pedido'
        verbose_name_plural = 'Pedidos'
        ordering = ['-criado_em']
        indexes = [
            models.Index(fields=['status', 'criado_em'], name='idx_pedido_status_criado'),
            models.Index(fields=['usuario_id', 'criado_em'], name='idx_pedido_usuario_criado'),
        ]

    def __str__(self):
        return f"[{self.id[:8]}] {self.metodo_pagamento} {self.status}"

    def __repr__(self):
        return f"<PedidoModel id={self.id[:8]} status={self.status}>"


class ItemPedidoModel(models.Model):
    """Item do pedido com título e preço congelados."""

    pedido = models.ForeignKey(
        PedidoModel,
        on_delete=models.PROTECT,
        related_name='itens',
    )
    posicao = models.PositiveSmallIntegerField(default=0)
    produto_tipo = models.CharField(max_length=10, choices=TipoProdutoChoices.choices)
    produto_id = models.CharField(max_length=100)
    titulo = models.CharField(max_length=300)
    preco_centavos = models.PositiveIntegerField()

    class Meta:
        db_table = 'pedido_itens'
        verbose_name = 'Item de Pedido'
        verbose_name_plural = 'Itens de Pedido'
        ordering = ['posicao']
        constraints = [
            models.UniqueConstraint(
                fields=['pedido', 'produto_tipo', 'produto_id'],
                name='item_unico_por_pedido',
            ),
        ]

    def __str__(self):
        return f"{self.produto_tipo}:{self.produto_id} ({self.preco_centavos})"


class EventoStatusModel(models.Model):
    """
    Histórico append-only das tentativas de transição.

    Nunca é atualizado nem apagado. A sequência é única por pedido.
    """

    id = models.CharField(max_length=36, primary_key=True, editable=False)

    pedido = models.ForeignKey(
        PedidoModel,
        on_delete=models.PROTECT,
        related_name='eventos_status',
    )

    sequencia = models.PositiveIntegerField(
        help_text="Posição no histórico do pedido"
    )

    status_anterior = models.CharField(max_length=20, choices=StatusPedidoChoices.choices)
    status_novo = models.CharField(max_length=20, choices=StatusPedidoChoices.choices)
    origem = models.CharField(max_length=20, choices=OrigemEventoChoices.choices)
    aceito = models.BooleanField(db_index=True)
    motivo_rejeicao = models.CharField(max_length=30, null=True, blank=True)
    resultado_gateway = models.CharField(max_length=20, null=True, blank=True)

    payload_bruto = models.JSONField(
        default=dict,
        help_text="Payload original do gateway (auditoria)"
    )

    ocorrido_em = models.DateTimeField(db_index=True)

    class Meta:
        db_table = 'pedido_eventos_status'
        verbose_name = 'Evento de Status'
        verbose_name_plural = 'Eventos de Status'
        ordering = ['pedido', 'sequencia']
        constraints = [
            models.UniqueConstraint(
                fields=['pedido', 'sequencia'],
                name='evento_status_sequencia_unica',
            ),
        ]

    def __str__(self):
        situacao = 'aceito' if self.aceito else self.motivo_rejeicao
        return f"#{self.sequencia} {self.status_anterior} -> {self.status_novo} ({situacao})"


class ConcessaoAcessoModel(models.Model):
    """Acesso liberado; no máximo um por (pedido, produto)."""

    id = models.CharField(max_length=36, primary_key=True, editable=False)

    pedido = models.ForeignKey(
        PedidoModel,
        on_delete=models.PROTECT,
        related_name='concessoes',
    )
    produto_tipo = models.CharField(max_length=10, choices=TipoProdutoChoices.choices)
    produto_id = models.CharField(max_length=100)
    usuario_id = models.CharField(max_length=100, db_index=True)
    concedido_em = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'concessoes_acesso'
        verbose_name = 'Concessão de Acesso'
        verbose_name_plural = 'Concessões de Acesso'
        constraints = [
            models.UniqueConstraint(
                fields=['pedido', 'produto_tipo', 'produto_id'],
                name='concessao_unica_por_produto',
            ),
        ]

    def __str__(self):
        return f"{self.produto_tipo}:{self.produto_id} -> {self.usuario_id}"


# =============================================================================
# Colaboradores (catálogo, matrícula, biblioteca)
# =============================================================================

class ProdutoCatalogoModel(models.Model):
    """Preço canônico dos produtos vendidos (alimentado pelo catálogo)."""

    tipo = models.CharField(max_length=10, choices=TipoProdutoChoices.choices)
    produto_id = models.CharField(max_length=100)
    titulo = models.CharField(max_length=300)
    preco_centavos = models.PositiveIntegerField()
    ativo = models.BooleanField(default=True)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'catalogo_produtos'
        verbose_name = 'Produto do Catálogo'
        verbose_name_plural = 'Produtos do Catálogo'
        constraints = [
            models.UniqueConstraint(
                fields=['tipo', 'produto_id'],
                name='produto_catalogo_unico',
            ),
        ]

    def __str__(self):
        return f"{self.tipo}:{self.produto_id} {self.titulo}"


class MatriculaModel(models.Model):
    """Matrícula de usuário em curso."""

    usuario_id = models.CharField(max_length=100, db_index=True)
    curso_id = models.CharField(max_length=100)
    criado_em = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'matriculas'
        constraints = [
            models.UniqueConstraint(
                fields=['usuario_id', 'curso_id'],
                name='matricula_unica',
            ),
        ]


class LiberacaoDownloadModel(models.Model):
    """Download de paper/e-book liberado para o usuário."""

    usuario_id = models.CharField(max_length=100, db_index=True)
    produto_tipo = models.CharField(max_length=10, choices=TipoProdutoChoices.choices)
    produto_id = models.CharField(max_length=100)
    url_download = models.URLField(max_length=500)
    criado_em = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'liberacoes_download'
        constraints = [
            models.UniqueConstraint(
                fields=['usuario_id', 'produto_tipo', 'produto_id'],
                name='liberacao_unica',
            ),
        ]
