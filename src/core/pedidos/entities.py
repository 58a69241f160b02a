"""
Entidades do Domínio de Pedidos.

Este módulo define as entidades que encapsulam as regras do checkout
de cursos, papers e e-books.

Entidades:
- PedidoEntity: Agregado principal (pedido + itens)
- EventoStatus: Histórico append-only de transições do pedido
- ConcessaoAcesso: Acesso liberado por (pedido, produto)

Regras de Negócio Encapsuladas:
- Valor total é a soma dos itens e nunca muda após a criação
- Transições de status controladas por tabela
- Pedidos CONCLUIDO/CANCELADO são terminais e imutáveis
- Timestamps do histórico são monotônicos por pedido
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Optional, Tuple
import re
import uuid

from src.core.shared.exceptions import ValidationError, BusinessRuleViolationError
from src.core.shared.tempo import agora

from .exceptions import TransicaoIlegalError


class _EnumConversivel(Enum):
    """Enum que aceita tanto o nome quanto o valor na conversão de strings."""

    @classmethod
    def from_string(cls, value: str):
        """
        Converte string para enum.

        Raises:
            ValueError: Se valor inválido
        """
        if isinstance(value, cls):
            return value

        texto = str(value or "").strip()

        # Tenta pelo nome (PENDENTE)
        try:
            return cls[texto.upper().replace(" ", "_").replace("-", "_")]
        except KeyError:
            pass

        # Tenta pelo valor ("PENDING")
        for membro in cls:
            if membro.value.lower() == texto.lower():
                return membro

        raise ValueError(f"{cls.__name__} inválido: {value}")


class StatusPedido(_EnumConversivel):
    """
    Estados possíveis de um pedido.

    Fluxo de Estados:
        PENDENTE → PROCESSANDO → CONCLUIDO
            │           │
            │           └──────→ CANCELADO
            ├──────────────────→ CONCLUIDO
            └──────────────────→ CANCELADO

    CONCLUIDO e CANCELADO são terminais.
    """

    PENDENTE = "PENDING"
    PROCESSANDO = "PROCESSING"
    CONCLUIDO = "COMPLETED"
    CANCELADO = "CANCELED"

    @property
    def terminal(self) -> bool:
        return self in (StatusPedido.CONCLUIDO, StatusPedido.CANCELADO)


class StatusPagamento(_EnumConversivel):
    """Situação do pagamento no gateway (espelha o histórico do pedido)."""

    PENDENTE = "PENDING"
    PROCESSANDO = "PROCESSING"
    CONFIRMADO = "CONFIRMED"
    VENCIDO = "OVERDUE"
    ESTORNADO = "REFUNDED"
    FALHOU = "FAILED"
    CANCELADO = "CANCELED"


class MetodoPagamento(_EnumConversivel):
    """Trilhos de pagamento suportados."""

    CARTAO_CREDITO = "CREDIT_CARD"
    PIX = "PIX"
    BOLETO = "BOLETO"

    @property
    def trilho(self) -> str:
        """Nome do trilho usado na rota de webhook."""
        return {
            MetodoPagamento.CARTAO_CREDITO: "cartao",
            MetodoPagamento.PIX: "pix",
            MetodoPagamento.BOLETO: "boleto",
        }[self]

    @property
    def sincrono(self) -> bool:
        """Cartão é autorizado na hora; PIX e boleto dependem de webhook."""
        return self == MetodoPagamento.CARTAO_CREDITO


class TipoProduto(_EnumConversivel):
    """Tipos de produto vendidos na loja."""

    CURSO = "course"
    PAPER = "paper"
    EBOOK = "ebook"


class OrigemEvento(_EnumConversivel):
    """De onde veio a informação que gerou um EventoStatus."""

    WEBHOOK = "webhook"
    CONCILIACAO = "poll"
    RESPOSTA_SINCRONA = "sync-response"
    MANUAL = "manual"


class ResultadoGateway(_EnumConversivel):
    """
    Resultados internos normalizados a partir dos trilhos.

    EM_PROCESSAMENTO representa o pagamento em análise (ex: análise de
    risco do cartão) e leva o pedido a PROCESSANDO.
    """

    PAGO = "PAID"
    PENDENTE = "PENDING"
    EM_PROCESSAMENTO = "PROCESSING"
    RECUSADO = "DECLINED"
    EXPIRADO = "EXPIRED"
    ESTORNADO = "REFUNDED"
    CANCELADO = "CANCELED"

    @property
    def destino(self) -> Tuple[StatusPedido, StatusPagamento]:
        """Status do pedido e do pagamento que este resultado produz."""
        return _DESTINOS[self]


_DESTINOS: Dict[ResultadoGateway, Tuple[StatusPedido, StatusPagamento]] = {
    ResultadoGateway.PAGO: (StatusPedido.CONCLUIDO, StatusPagamento.CONFIRMADO),
    ResultadoGateway.PENDENTE: (StatusPedido.PENDENTE, StatusPagamento.PENDENTE),
    ResultadoGateway.EM_PROCESSAMENTO: (StatusPedido.PROCESSANDO, StatusPagamento.PROCESSANDO),
    ResultadoGateway.RECUSADO: (StatusPedido.CANCELADO, StatusPagamento.FALHOU),
    ResultadoGateway.EXPIRADO: (StatusPedido.CANCELADO, StatusPagamento.VENCIDO),
    ResultadoGateway.ESTORNADO: (StatusPedido.CANCELADO, StatusPagamento.ESTORNADO),
    ResultadoGateway.CANCELADO: (StatusPedido.CANCELADO, StatusPagamento.CANCELADO),
}


TRANSICOES_VALIDAS: Dict[StatusPedido, FrozenSet[StatusPedido]] = {
    StatusPedido.PENDENTE: frozenset({
        StatusPedido.PROCESSANDO,
        StatusPedido.CONCLUIDO,
        StatusPedido.CANCELADO,
    }),
    StatusPedido.PROCESSANDO: frozenset({
        StatusPedido.CONCLUIDO,
        StatusPedido.CANCELADO,
    }),
    StatusPedido.CONCLUIDO: frozenset(),
    StatusPedido.CANCELADO: frozenset(),
}

MOTIVO_DUPLICADO = "duplicado"
MOTIVO_TRANSICAO_ILEGAL = "transicao_ilegal"


# =============================================================================
# Value Objects
# =============================================================================

@dataclass(frozen=True)
class ProdutoRef:
    """Referência a um produto do catálogo ({curso|paper|ebook} + id)."""

    tipo: TipoProduto
    produto_id: str

    @property
    def chave(self) -> str:
        return f"{self.tipo.value}:{self.produto_id}"

    def __str__(self) -> str:
        return self.chave


@dataclass(frozen=True)
class ItemPedido:
    """Item do pedido com título e preço congelados no momento da compra."""

    produto: ProdutoRef
    titulo: str
    preco_centavos: int


@dataclass(frozen=True)
class DadosCliente:
    """
    Dados de cobrança do comprador.

    Guardados no pedido para permitir reemitir cobranças PIX/boleto
    sem depender do navegador do cliente.
    """

    nome: str
    email: str
    cpf_cnpj: str
    telefone: Optional[str] = None
    cep: Optional[str] = None
    endereco: Optional[str] = None
    numero: Optional[str] = None
    bairro: Optional[str] = None

    EMAIL_REGEX: ClassVar = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @classmethod
    def criar(
        cls,
        nome: str,
        email: str,
        cpf_cnpj: str,
        telefone: Optional[str] = None,
        cep: Optional[str] = None,
        endereco: Optional[str] = None,
        numero: Optional[str] = None,
        bairro: Optional[str] = None,
    ) -> "DadosCliente":
        """
        Factory com validação e normalização (CPF/CNPJ só com dígitos).

        Raises:
            ValidationError: Se nome, email ou documento inválidos
        """
        nome = (nome or "").strip()
        if len(nome) < 3:
            raise ValidationError("Nome do cliente é obrigatório", field="nome")

        email = (email or "").strip().lower()
        if not cls.EMAIL_REGEX.match(email):
            raise ValidationError(f"Email inválido: {email!r}", field="email")

        documento = re.sub(r"\D", "", cpf_cnpj or "")
        if len(documento) not in (11, 14):
            raise ValidationError(
                "CPF/CNPJ deve ter 11 ou 14 dígitos",
                field="cpf_cnpj",
            )

        return cls(
            nome=nome,
            email=email,
            cpf_cnpj=documento,
            telefone=re.sub(r"\D", "", telefone) if telefone else None,
            cep=re.sub(r"\D", "", cep) if cep else None,
            endereco=endereco or None,
            numero=numero or None,
            bairro=bairro or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nome": self.nome,
            "email": self.email,
            "cpf_cnpj": self.cpf_cnpj,
            "telefone": self.telefone,
            "cep": self.cep,
            "endereco": self.endereco,
            "numero": self.numero,
            "bairro": self.bairro,
        }


# =============================================================================
# Agregado: Pedido
# =============================================================================

@dataclass
class PedidoEntity:
    """
    Entidade de Domínio: Pedido.

    Agregado principal do checkout. Dono exclusivo dos seus itens e do
    seu histórico de status.

    Invariantes:
    - valor_total == soma dos preços dos itens (congelados na criação)
    - Itens e valor nunca mudam após a criação
    - Status só muda por transições da tabela TRANSICOES_VALIDAS
    - Pedido CONCLUIDO/CANCELADO não aceita nenhuma transição
    - Uma vez emitida, a cobrança (cobranca_id) não é substituída

    Attributes:
        id: Identificador único (UUID)
        usuario_id: Dono do pedido (None em checkout de visitante)
        itens: Itens com preço congelado
        valor_total: Soma dos itens em centavos
        metodo_pagamento: Trilho escolhido
        status: Estado do pedido
        status_pagamento: Situação do pagamento no gateway
        cobranca_id: Referência opaca da cobrança no gateway
        cliente: Dados de cobrança do comprador
        parcelas: Número de parcelas (só cartão)
        concessao_pendente: Pedido pago com acessos ainda não liberados
        verificado_em: Última consulta da conciliação
    """

    # Identificação
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    usuario_id: Optional[str] = None

    # Itens (imutáveis)
    itens: Tuple[ItemPedido, ...] = ()
    valor_total: int = 0

    # Pagamento
    metodo_pagamento: MetodoPagamento = MetodoPagamento.PIX
    status: StatusPedido = StatusPedido.PENDENTE
    status_pagamento: StatusPagamento = StatusPagamento.PENDENTE
    cobranca_id: Optional[str] = None
    cliente: Optional[DadosCliente] = None
    parcelas: int = 1

    # Dados devolvidos pelo gateway
    pix_copia_e_cola: Optional[str] = None
    pix_qr_code: Optional[str] = None
    pix_expira_em: Optional[datetime] = None
    boleto_url: Optional[str] = None
    boleto_codigo_barras: Optional[str] = None
    motivo_recusa: Optional[str] = None

    # Controle
    concessao_pendente: bool = False
    verificado_em: Optional[datetime] = None

    # Timestamps
    criado_em: datetime = field(default_factory=agora)
    atualizado_em: datetime = field(default_factory=agora)

    MAX_PARCELAS: ClassVar[int] = 12

    def __post_init__(self):
        self.itens = tuple(self.itens)
        soma = sum(item.preco_centavos for item in self.itens)
        if soma != self.valor_total:
            raise BusinessRuleViolationError(
                f"Valor total {self.valor_total} difere da soma dos itens {soma}",
                rule="valor_total_igual_soma_itens",
            )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def criar(
        cls,
        itens: Iterable[ItemPedido],
        metodo_pagamento: MetodoPagamento,
        cliente: DadosCliente,
        usuario_id: Optional[str] = None,
        parcelas: int = 1,
    ) -> "PedidoEntity":
        """
        Factory method para criar pedido PENDENTE com validações.

        Args:
            itens: Itens já com preço canônico do catálogo
            metodo_pagamento: Trilho de pagamento
            cliente: Dados de cobrança validados
            usuario_id: Dono (None para visitante)
            parcelas: Parcelas do cartão (1 a 12)

        Returns:
            Nova instância de PedidoEntity

        Raises:
            ValidationError: Se itens ou parcelas inválidos
        """
        itens = tuple(itens)
        cls._validar_itens(itens)
        cls._validar_parcelas(parcelas, metodo_pagamento)

        momento = agora()
        return cls(
            usuario_id=usuario_id or None,
            itens=itens,
            valor_total=sum(item.preco_centavos for item in itens),
            metodo_pagamento=metodo_pagamento,
            cliente=cliente,
            parcelas=parcelas,
            criado_em=momento,
            atualizado_em=momento,
        )

    @classmethod
    def _validar_itens(cls, itens: Tuple[ItemPedido, ...]) -> None:
        if not itens:
            raise ValidationError("Pedido deve ter ao menos um item", field="itens")

        vistos = set()
        for item in itens:
            if item.produto in vistos:
                raise ValidationError(
                    f"Produto {item.produto} repetido no pedido",
                    field="itens",
                )
            vistos.add(item.produto)

            if not isinstance(item.preco_centavos, int) or item.preco_centavos <= 0:
                raise ValidationError(
                    f"Preço inválido para {item.produto}: {item.preco_centavos}",
                    field="itens",
                )

    @classmethod
    def _validar_parcelas(cls, parcelas: int, metodo: MetodoPagamento) -> None:
        if not isinstance(parcelas, int) or not 1 <= parcelas <= cls.MAX_PARCELAS:
            raise ValidationError(
                f"Parcelas devem estar entre 1 e {cls.MAX_PARCELAS}",
                field="parcelas",
            )
        if parcelas > 1 and metodo != MetodoPagamento.CARTAO_CREDITO:
            raise ValidationError(
                "Parcelamento disponível apenas no cartão de crédito",
                field="parcelas",
            )

    # -------------------------------------------------------------------------
    # Máquina de estados
    # -------------------------------------------------------------------------

    def avaliar_transicao(self, novo_status: StatusPedido) -> Optional[str]:
        """
        Verifica se a transição é permitida, sem alterar o pedido.

        Returns:
            None se permitida; "duplicado" se o pedido já está no status;
            "transicao_ilegal" se a aresta não existe na tabela
        """
        if novo_status == self.status:
            return MOTIVO_DUPLICADO
        if novo_status not in TRANSICOES_VALIDAS[self.status]:
            return MOTIVO_TRANSICAO_ILEGAL
        return None

    def pode_transitar_para(self, novo_status: StatusPedido) -> bool:
        return self.avaliar_transicao(novo_status) is None

    def aplicar_transicao(
        self,
        novo_status: StatusPedido,
        novo_status_pagamento: StatusPagamento,
        motivo: Optional[str] = None,
    ) -> None:
        """
        Move o pedido para novo status.

        Ao chegar em CONCLUIDO marca concessao_pendente, que só é
        desmarcada quando todos os acessos forem registrados.

        Raises:
            TransicaoIlegalError: Se a aresta não é permitida
        """
        rejeicao = self.avaliar_transicao(novo_status)
        if rejeicao:
            raise TransicaoIlegalError(self.status.value, novo_status.value, rejeicao)

        self.status = novo_status
        self.status_pagamento = novo_status_pagamento

        if novo_status == StatusPedido.CONCLUIDO:
            self.concessao_pendente = True
        if novo_status == StatusPedido.CANCELADO and motivo:
            self.motivo_recusa = motivo

        self._atualizar_timestamp()

    # -------------------------------------------------------------------------
    # Cobrança
    # -------------------------------------------------------------------------

    def registrar_cobranca(
        self,
        cobranca_id: str,
        pix_copia_e_cola: Optional[str] = None,
        pix_qr_code: Optional[str] = None,
        pix_expira_em: Optional[datetime] = None,
        boleto_url: Optional[str] = None,
        boleto_codigo_barras: Optional[str] = None,
    ) -> None:
        """
        Associa a cobrança emitida pelo gateway ao pedido.

        Raises:
            BusinessRuleViolationError: Se pedido finalizado ou se já existe
                outra cobrança
        """
        if not cobranca_id:
            raise ValidationError("cobranca_id é obrigatório", field="cobranca_id")

        if self.cobranca_id and self.cobranca_id != cobranca_id:
            raise BusinessRuleViolationError(
                f"Pedido {self.id} já possui a cobrança {self.cobranca_id}",
                rule="cobranca_unica",
            )

        if self.esta_finalizado:
            raise BusinessRuleViolationError(
                f"Pedido {self.id} está {self.status.value}",
                rule="pedido_imutavel",
            )

        self.cobranca_id = cobranca_id
        self.pix_copia_e_cola = pix_copia_e_cola or self.pix_copia_e_cola
        self.pix_qr_code = pix_qr_code or self.pix_qr_code
        self.pix_expira_em = pix_expira_em or self.pix_expira_em
        self.boleto_url = boleto_url or self.boleto_url
        self.boleto_codigo_barras = boleto_codigo_barras or self.boleto_codigo_barras
        self._atualizar_timestamp()

    def marcar_verificado(self, momento: Optional[datetime] = None) -> None:
        """Registra a última consulta da conciliação."""
        if self.esta_finalizado:
            return
        self.verificado_em = momento or agora()

    # -------------------------------------------------------------------------
    # Acesso
    # -------------------------------------------------------------------------

    def vincular_usuario(self, usuario_id: str) -> None:
        """
        Associa uma conta a um pedido de visitante.

        Permitido mesmo em pedido finalizado: não altera status nem valores.

        Raises:
            BusinessRuleViolationError: Se o pedido já pertence a outro usuário
        """
        if not usuario_id:
            raise ValidationError("usuario_id é obrigatório", field="usuario_id")

        if self.usuario_id and self.usuario_id != usuario_id:
            raise BusinessRuleViolationError(
                f"Pedido {self.id} já pertence a outro usuário",
                rule="dono_do_pedido",
            )

        self.usuario_id = usuario_id

    def marcar_concessao_concluida(self) -> None:
        self.concessao_pendente = False

    # -------------------------------------------------------------------------
    # Propriedades
    # -------------------------------------------------------------------------

    @property
    def esta_finalizado(self) -> bool:
        return self.status.terminal

    @property
    def aguardando_confirmacao(self) -> bool:
        return not self.status.terminal

    @property
    def tem_cobranca(self) -> bool:
        return bool(self.cobranca_id)

    def _atualizar_timestamp(self) -> None:
        self.atualizado_em = agora()


# =============================================================================
# Histórico de status
# =============================================================================

@dataclass
class EventoStatus:
    """
    Registro append-only de uma tentativa de transição.

    Transições aceitas formam um caminho válido na tabela de estados;
    duplicadas e ilegais ficam registradas com aceito=False para auditoria.

    Attributes:
        sequencia: Posição no histórico do pedido (1..n)
        status_anterior: Status do pedido quando o evento chegou
        status_novo: Status pretendido pelo evento
        origem: webhook, poll, sync-response ou manual
        payload_bruto: Payload do gateway guardado para auditoria
        aceito: Se a transição foi aplicada
        motivo_rejeicao: "duplicado" ou "transicao_ilegal"
    """

    pedido_id: str
    sequencia: int
    status_anterior: StatusPedido
    status_novo: StatusPedido
    origem: OrigemEvento
    aceito: bool
    ocorrido_em: datetime
    resultado_gateway: Optional[ResultadoGateway] = None
    payload_bruto: Dict[str, Any] = field(default_factory=dict)
    motivo_rejeicao: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def registrar(
        cls,
        pedido: PedidoEntity,
        status_novo: StatusPedido,
        origem: OrigemEvento,
        anterior: Optional["EventoStatus"] = None,
        resultado: Optional[ResultadoGateway] = None,
        payload: Optional[Dict[str, Any]] = None,
        momento: Optional[datetime] = None,
    ) -> "EventoStatus":
        """
        Cria o próximo evento do histórico de um pedido.

        Deve ser chamado antes de aplicar a transição: status_anterior é o
        status corrente do pedido. O timestamp nunca é menor que o do
        evento anterior.
        """
        rejeicao = pedido.avaliar_transicao(status_novo)
        momento = momento or agora()

        sequencia = 1
        if anterior is not None:
            sequencia = anterior.sequencia + 1
            momento = max(momento, anterior.ocorrido_em)

        return cls(
            pedido_id=pedido.id,
            sequencia=sequencia,
            status_anterior=pedido.status,
            status_novo=status_novo,
            origem=origem,
            aceito=rejeicao is None,
            motivo_rejeicao=rejeicao,
            resultado_gateway=resultado,
            payload_bruto=dict(payload or {}),
            ocorrido_em=momento,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pedido_id": self.pedido_id,
            "sequencia": self.sequencia,
            "status_anterior": self.status_anterior.value,
            "status_novo": self.status_novo.value,
            "origem": self.origem.value,
            "aceito": self.aceito,
            "motivo_rejeicao": self.motivo_rejeicao,
            "resultado_gateway": self.resultado_gateway.value if self.resultado_gateway else None,
            "payload_bruto": self.payload_bruto,
            "ocorrido_em": self.ocorrido_em.isoformat(),
        }


# =============================================================================
# Concessão de acesso
# =============================================================================

@dataclass
class ConcessaoAcesso:
    """
    Acesso liberado a um produto por causa de um pedido pago.

    Existe no máximo uma concessão por (pedido, produto): é a âncora de
    idempotência da liberação de acesso.
    """

    pedido_id: str
    produto: ProdutoRef
    usuario_id: str
    concedido_em: datetime = field(default_factory=agora)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def criar(cls, pedido: PedidoEntity, item: ItemPedido) -> "ConcessaoAcesso":
        if not pedido.usuario_id:
            raise BusinessRuleViolationError(
                f"Pedido {pedido.id} não tem usuário associado",
                rule="concessao_requer_usuario",
            )
        return cls(pedido_id=pedido.id, produto=item.produto, usuario_id=pedido.usuario_id)
