"""
Ports (Interfaces) do Domínio de Pedidos.

Define os contratos que os Adapters de infraestrutura devem implementar.

Tipos de Ports:
- PedidoRepository: Pedidos e histórico de status (Order Store)
- ConcessaoRepository: Concessões de acesso (idempotência)
- GatewayPagamento: Criação/consulta/cancelamento de cobranças
- EstrategiaTrilho: Verificação e classificação de webhooks por trilho
- CatalogoProdutos, ServicoMatricula, ServicoBiblioteca, ServicoIdentidade:
  colaboradores externos ao núcleo

Cada port tem uma implementação em memória neste módulo, usada nos
testes unitários e em desenvolvimento local.

Princípio:
    Core define interfaces → Adapters implementam
"""

from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timedelta
from typing import (
    Any,
    ContextManager,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
    Tuple,
    runtime_checkable,
)
import threading
import uuid

from src.core.shared.tempo import agora

from .dtos import CobrancaCriada, DadosCartaoDTO, NotificacaoGateway
from .entities import (
    ConcessaoAcesso,
    EventoStatus,
    MetodoPagamento,
    PedidoEntity,
    ProdutoRef,
    ResultadoGateway,
    StatusPedido,
)
from .exceptions import (
    CobrancaDesconhecidaError,
    GatewayError,
    GatewayIndisponivelError,
    IdentidadeError,
    PagamentoRecusadoError,
)


# =============================================================================
# Persistência
# =============================================================================

@runtime_checkable
class PedidoRepository(Protocol):
    """
    Interface para persistência de Pedidos e do seu histórico.

    Pedidos nunca são removidos: não existe delete.

    Implementações:
    - DjangoPedidoRepository (PostgreSQL via ORM, lock de linha)
    - InMemoryPedidoRepository (para testes)
    """

    def save(self, pedido: PedidoEntity) -> None:
        """Persiste pedido (create ou update)."""
        ...

    def get_by_id(self, pedido_id: str) -> Optional[PedidoEntity]:
        """Busca pedido por ID, None se não existir."""
        ...

    def get_by_cobranca_id(self, cobranca_id: str) -> Optional[PedidoEntity]:
        """Busca pedido pela referência da cobrança no gateway."""
        ...

    def travar(self, pedido_id: str) -> ContextManager[Optional[PedidoEntity]]:
        """
        Carrega o pedido com lock exclusivo por pedido.

        Deve ser usado dentro de um UnitOfWork; o lock vale até o fim
        do bloco (em Django, até o commit da transação). Pedidos
        diferentes não se bloqueiam.

        Example:
            with uow, repo.travar(pedido_id) as pedido:
                ...
        """
        ...

    def ultimo_evento_status(self, pedido_id: str) -> Optional[EventoStatus]:
        """Último EventoStatus registrado (maior sequência)."""
        ...

    def adicionar_evento_status(self, evento: EventoStatus) -> None:
        """Acrescenta um EventoStatus ao histórico (append-only)."""
        ...

    def listar_eventos_status(self, pedido_id: str) -> List[EventoStatus]:
        """Histórico completo em ordem de sequência."""
        ...

    def list_aguardando_confirmacao(
        self,
        cortes: Mapping[MetodoPagamento, datetime],
        limite: int,
    ) -> List[PedidoEntity]:
        """
        Pedidos PENDENTE/PROCESSANDO criados antes do corte do seu método.

        Ordenados pela verificação mais antiga (nunca verificados primeiro).
        """
        ...

    def list_concessao_pendente(self, limite: int) -> List[PedidoEntity]:
        """
        Pedidos CONCLUIDO com acessos ainda não liberados.

        Pedidos de visitante sem conta ficam de fora até VincularUsuarioService.
        """
        ...

    def listar(
        self,
        usuario_id: Optional[str] = None,
        status: Optional[StatusPedido] = None,
        offset: int = 0,
        limite: int = 20,
    ) -> Tuple[List[PedidoEntity], int]:
        """Lista pedidos (mais recentes primeiro) e o total filtrado."""
        ...


@runtime_checkable
class ConcessaoRepository(Protocol):
    """
    Interface para persistência de concessões de acesso.

    A unicidade (pedido, produto) é garantida pela implementação
    (UniqueConstraint no banco, lock em memória).
    """

    def existe(self, pedido_id: str, produto: ProdutoRef) -> bool:
        ...

    def registrar_se_ausente(self, concessao: ConcessaoAcesso) -> bool:
        """
        Insere a concessão se ainda não existir.

        Returns:
            True se inseriu, False se já existia
        """
        ...

    def list_by_pedido(self, pedido_id: str) -> List[ConcessaoAcesso]:
        ...


# =============================================================================
# Gateway de pagamento
# =============================================================================

@runtime_checkable
class GatewayPagamento(Protocol):
    """
    Interface para o gateway que atende os trilhos.

    Erros esperados:
    - GatewayIndisponivelError: rede/timeout/5xx
    - PagamentoRecusadoError: cartão recusado pelo trilho
    """

    def criar_cobranca(
        self,
        pedido: PedidoEntity,
        cartao: Optional[DadosCartaoDTO] = None,
        ip_remoto: Optional[str] = None,
    ) -> CobrancaCriada:
        ...

    def consultar_cobranca(self, cobranca_id: str) -> NotificacaoGateway:
        ...

    def cancelar_cobranca(self, cobranca_id: str) -> None:
        ...


@runtime_checkable
class EstrategiaTrilho(Protocol):
    """
    Estratégia de webhook de um trilho (despachada pelo nome do trilho).

    Nunca altera estado: só autentica e classifica.
    """

    trilho: str

    def verificar(self, cabecalhos: Mapping[str, str], corpo: bytes) -> None:
        """
        Raises:
            AssinaturaInvalidaError: Se o webhook não é autêntico
        """
        ...

    def classificar(self, payload: Mapping[str, Any]) -> NotificacaoGateway:
        """
        Raises:
            ValidationError: Se o payload não tem a forma esperada
        """
        ...


# =============================================================================
# Colaboradores externos
# =============================================================================

@runtime_checkable
class CatalogoProdutos(Protocol):
    """Catálogo de cursos, papers e e-books (fora do núcleo)."""

    def produto_existe(self, produto: ProdutoRef) -> bool:
        ...

    def preco_atual(self, produto: ProdutoRef) -> int:
        """Preço canônico em centavos."""
        ...

    def titulo(self, produto: ProdutoRef) -> str:
        """Título para o snapshot do item."""
        ...


@runtime_checkable
class ServicoMatricula(Protocol):
    def garantir_matricula(self, usuario_id: str, curso_id: str) -> None:
        """Idempotente: matricular duas vezes não duplica a matrícula."""
        ...


@runtime_checkable
class ServicoBiblioteca(Protocol):
    def garantir_liberacao(self, usuario_id: str, produto: ProdutoRef) -> None:
        """Idempotente: libera download de paper/e-book."""
        ...


@runtime_checkable
class ServicoIdentidade(Protocol):
    def criar_usuario(self, email: str, senha: str, nome: Optional[str] = None) -> str:
        """
        Raises:
            IdentidadeError: Se o usuário não puder ser criado
        """
        ...

    def emitir_sessao(self, usuario_id: str) -> str:
        ...


# =============================================================================
# Implementações em memória
# =============================================================================

class InMemoryPedidoRepository:
    """
    Implementação em memória do PedidoRepository.

    Guarda cópias das entidades (alterações só valem após save) e
    serializa o acesso por pedido com um lock próprio de cada pedido.

    Não usar em produção!
    """

    def __init__(self):
        self._pedidos: Dict[str, PedidoEntity] = {}
        self._eventos: Dict[str, List[EventoStatus]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guarda = threading.Lock()

    def save(self, pedido: PedidoEntity) -> None:
        with self._guarda:
            self._pedidos[pedido.id] = deepcopy(pedido)

    def get_by_id(self, pedido_id: str) -> Optional[PedidoEntity]:
        with self._guarda:
            pedido = self._pedidos.get(pedido_id)
            return deepcopy(pedido) if pedido else None

    def get_by_cobranca_id(self, cobranca_id: str) -> Optional[PedidoEntity]:
        with self._guarda:
            for pedido in self._pedidos.values():
                if pedido.cobranca_id == cobranca_id:
                    return deepcopy(pedido)
        return None

    @contextmanager
    def travar(self, pedido_id: str) -> Iterator[Optional[PedidoEntity]]:
        with self._guarda:
            lock = self._locks.setdefault(pedido_id, threading.RLock())
        with lock:
            yield self.get_by_id(pedido_id)

    def ultimo_evento_status(self, pedido_id: str) -> Optional[EventoStatus]:
        with self._guarda:
            eventos = self._eventos.get(pedido_id)
            return deepcopy(eventos[-1]) if eventos else None

    def adicionar_evento_status(self, evento: EventoStatus) -> None:
        with self._guarda:
            self._eventos.setdefault(evento.pedido_id, []).append(deepcopy(evento))

    def listar_eventos_status(self, pedido_id: str) -> List[EventoStatus]:
        with self._guarda:
            eventos = self._eventos.get(pedido_id, [])
            return [deepcopy(e) for e in sorted(eventos, key=lambda e: e.sequencia)]

    def list_aguardando_confirmacao(
        self,
        cortes: Mapping[MetodoPagamento, datetime],
        limite: int,
    ) -> List[PedidoEntity]:
        with self._guarda:
            candidatos = [
                p for p in self._pedidos.values()
                if not p.esta_finalizado and p.criado_em <= cortes[p.metodo_pagamento]
            ]
        nunca = datetime.min.replace(tzinfo=agora().tzinfo)
        candidatos.sort(key=lambda p: (p.verificado_em or nunca, p.criado_em))
        return [deepcopy(p) for p in candidatos[:limite]]

    def list_concessao_pendente(self, limite: int) -> List[PedidoEntity]:
        with self._guarda:
            pendentes = [
                p for p in self._pedidos.values()
                if p.status == StatusPedido.CONCLUIDO and p.concessao_pendente and p.usuario_id
            ]
        pendentes.sort(key=lambda p: p.atualizado_em)
        return [deepcopy(p) for p in pendentes[:limite]]

    def listar(
        self,
        usuario_id: Optional[str] = None,
        status: Optional[StatusPedido] = None,
        offset: int = 0,
        limite: int = 20,
    ) -> Tuple[List[PedidoEntity], int]:
        with self._guarda:
            pedidos = [
                p for p in self._pedidos.values()
                if (usuario_id is None or p.usuario_id == usuario_id)
                and (status is None or p.status == status)
            ]
        pedidos.sort(key=lambda p: p.criado_em, reverse=True)
        return [deepcopy(p) for p in pedidos[offset:offset + limite]], len(pedidos)

    def clear(self) -> None:
        """Limpa todos os dados (útil para testes)."""
        with self._guarda:
            self._pedidos.clear()
            self._eventos.clear()


class InMemoryConcessaoRepository:
    """Implementação em memória do ConcessaoRepository."""

    def __init__(self):
        self._concessoes: Dict[Tuple[str, ProdutoRef], ConcessaoAcesso] = {}
        self._lock = threading.Lock()

    def existe(self, pedido_id: str, produto: ProdutoRef) -> bool:
        with self._lock:
            return (pedido_id, produto) in self._concessoes

    def registrar_se_ausente(self, concessao: ConcessaoAcesso) -> bool:
        chave = (concessao.pedido_id, concessao.produto)
        with self._lock:
            if chave in self._concessoes:
                return False
            self._concessoes[chave] = deepcopy(concessao)
            return True

    def list_by_pedido(self, pedido_id: str) -> List[ConcessaoAcesso]:
        with self._lock:
            return [deepcopy(c) for (pid, _), c in self._concessoes.items() if pid == pedido_id]

    def count(self) -> int:
        with self._lock:
            return len(self._concessoes)


class InMemoryCatalogo:
    """
    Catálogo em memória.

    Example:
        catalogo = InMemoryCatalogo()
        catalogo.adicionar(ProdutoRef(TipoProduto.CURSO, "c1"), "Curso", 19900)
    """

    def __init__(self):
        self._produtos: Dict[ProdutoRef, Tuple[str, int]] = {}

    def adicionar(self, produto: ProdutoRef, titulo: str, preco_centavos: int) -> None:
        self._produtos[produto] = (titulo, preco_centavos)

    def alterar_preco(self, produto: ProdutoRef, preco_centavos: int) -> None:
        titulo, _ = self._produtos[produto]
        self._produtos[produto] = (titulo, preco_centavos)

    def produto_existe(self, produto: ProdutoRef) -> bool:
        return produto in self._produtos

    def preco_atual(self, produto: ProdutoRef) -> int:
        return self._produtos[produto][1]

    def titulo(self, produto: ProdutoRef) -> str:
        return self._produtos[produto][0]


class InMemoryMatricula:
    """Matrículas em memória; conta chamadas para verificar idempotência."""

    def __init__(self):
        self.matriculas: Set[Tuple[str, str]] = set()
        self.chamadas = 0
        self.falhar = False

    def garantir_matricula(self, usuario_id: str, curso_id: str) -> None:
        self.chamadas += 1
        if self.falhar:
            raise RuntimeError("serviço de matrícula indisponível")
        self.matriculas.add((usuario_id, curso_id))


class InMemoryBiblioteca:
    """Liberações de download em memória."""

    def __init__(self):
        self.liberacoes: Set[Tuple[str, ProdutoRef]] = set()
        self.chamadas = 0

    def garantir_liberacao(self, usuario_id: str, produto: ProdutoRef) -> None:
        self.chamadas += 1
        self.liberacoes.add((usuario_id, produto))


class InMemoryIdentidade:
    """Identidade em memória: email único por usuário."""

    def __init__(self):
        self.usuarios: Dict[str, str] = {}
        self.sessoes: Dict[str, str] = {}

    def criar_usuario(self, email: str, senha: str, nome: Optional[str] = None) -> str:
        if not senha or len(senha) < 6:
            raise IdentidadeError("Senha deve ter ao menos 6 caracteres")
        if email in self.usuarios.values():
            raise IdentidadeError(f"Já existe conta para {email}")
        usuario_id = str(uuid.uuid4())
        self.usuarios[usuario_id] = email
        return usuario_id

    def emitir_sessao(self, usuario_id: str) -> str:
        token = uuid.uuid4().hex
        self.sessoes[token] = usuario_id
        return token


class InMemoryGatewayPagamento:
    """
    Gateway programável para testes e desenvolvimento local.

    Por padrão: cartão aprovado na hora, PIX/boleto pendentes.

    Example:
        gateway = InMemoryGatewayPagamento()
        gateway.recusar_cartao("Cartão sem limite")
        gateway.rejeitar_dados("O CPF/CNPJ informado é inválido.")
        gateway.definir_resultado(cobranca_id, ResultadoGateway.PAGO)
    """

    def __init__(self):
        self.cobrancas: Dict[str, Dict[str, Any]] = {}
        self.canceladas: List[str] = []
        self.resultado_cartao = ResultadoGateway.PAGO
        self._motivo_recusa: Optional[str] = None
        self._motivo_rejeicao: Optional[str] = None
        self._indisponivel = False

    def recusar_cartao(self, motivo: str) -> None:
        self._motivo_recusa = motivo

    def ficar_indisponivel(self, indisponivel: bool = True) -> None:
        self._indisponivel = indisponivel

    def rejeitar_dados(self, motivo: Optional[str]) -> None:
        """Próximas cobranças rejeitadas como um 4xx do gateway (None desfaz)."""
        self._motivo_rejeicao = motivo

    def definir_resultado(self, cobranca_id: str, resultado: ResultadoGateway) -> None:
        self.cobrancas[cobranca_id]["resultado"] = resultado

    def criar_cobranca(
        self,
        pedido: PedidoEntity,
        cartao: Optional[DadosCartaoDTO] = None,
        ip_remoto: Optional[str] = None,
    ) -> CobrancaCriada:
        if self._indisponivel:
            raise GatewayIndisponivelError("gateway em memória indisponível")
        if self._motivo_rejeicao:
            raise GatewayError(self._motivo_rejeicao, "GATEWAY_REQUEST_REJECTED", 400)

        cobranca_id = f"pay_{uuid.uuid4().hex[:12]}"
        metodo = pedido.metodo_pagamento

        if metodo == MetodoPagamento.CARTAO_CREDITO and self._motivo_recusa:
            raise PagamentoRecusadoError(self._motivo_recusa, cobranca_id=cobranca_id)

        resultado = (
            self.resultado_cartao
            if metodo == MetodoPagamento.CARTAO_CREDITO
            else ResultadoGateway.PENDENTE
        )
        self.cobrancas[cobranca_id] = {
            "pedido_id": pedido.id,
            "metodo": metodo,
            "resultado": resultado,
        }

        extras: Dict[str, Any] = {}
        if metodo == MetodoPagamento.PIX:
            extras = {
                "pix_copia_e_cola": f"00020126580014br.gov.bcb.pix-{cobranca_id}",
                "pix_qr_code": "iVBORw0KGgo=",
                "pix_expira_em": agora() + timedelta(minutes=30),
            }
        elif metodo == MetodoPagamento.BOLETO:
            extras = {
                "boleto_url": f"https://sandbox.asaas.com/b/pdf/{cobranca_id}",
                "boleto_codigo_barras": "23793381286000000000000000000000000000000000",
                "vencimento": (agora() + timedelta(days=7)).date(),
            }

        return CobrancaCriada(
            cobranca_id=cobranca_id,
            resultado=resultado,
            status_bruto=resultado.value,
            payload={"id": cobranca_id, "status": resultado.value},
            **extras,
        )

    def consultar_cobranca(self, cobranca_id: str) -> NotificacaoGateway:
        if self._indisponivel:
            raise GatewayIndisponivelError("gateway em memória indisponível")
        cobranca = self.cobrancas.get(cobranca_id)
        if cobranca is None:
            raise CobrancaDesconhecidaError(cobranca_id)
        return NotificacaoGateway(
            trilho=cobranca["metodo"].trilho,
            cobranca_id=cobranca_id,
            resultado=cobranca["resultado"],
            status_bruto=cobranca["resultado"].value,
            referencia_externa=cobranca["pedido_id"],
            payload={"id": cobranca_id, "status": cobranca["resultado"].value},
        )

    def cancelar_cobranca(self, cobranca_id: str) -> None:
        if self._indisponivel:
            raise GatewayIndisponivelError("gateway em memória indisponível")
        self.canceladas.append(cobranca_id)
        if cobranca_id in self.cobrancas:
            self.cobrancas[cobranca_id]["resultado"] = ResultadoGateway.CANCELADO
