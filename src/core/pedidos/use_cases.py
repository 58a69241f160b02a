"""
Use Cases (Application Services) do Domínio de Pedidos.

Este módulo contém os casos de uso do checkout, que orquestram
entidades, repositórios, gateway e colaboradores externos.

Use Cases implementados:
- AplicarTransicaoService: Entrada única da máquina de estados
- CriarCheckoutService: Valida, registra e cobra um pedido
- RetentarCobrancaService: Emite a cobrança de um pedido sem cobrança
- ProcessarWebhookService: Autentica, classifica e aplica webhooks
- ConcederAcessoService: Libera acesso aos produtos de pedidos pagos
- ReprocessarConcessoesService: Varredura de concessões pendentes
- VincularUsuarioService: Associa conta a pedido de visitante
- CancelarPedidoService: Cancelamento manual (admin)
- ConciliarPedidosService: Reconsulta pedidos parados no gateway
- ObterStatusPedidoService / ListarPedidosService /
  ObterHistoricoPedidoService: Consultas

Princípios:
- Um Use Case = Uma operação de negócio
- Dependências injetadas (DI)
- Toda mudança de status passa por AplicarTransicaoService
- Nenhuma chamada ao gateway com lock de pedido aberto, exceto a
  emissão da cobrança (o lock é o que impede cobrança em dobro)
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
import json
import logging
import re

from src.core.shared.interfaces import UnitOfWork
from src.core.shared.exceptions import EntityNotFoundError, ValidationError
from src.core.shared.tempo import agora

from .config import ConfiguracaoConciliacao
from .dtos import (
    CheckoutOutputDTO,
    CriarCheckoutInputDTO,
    DadosCartaoDTO,
    NotificacaoGateway,
    PedidoListItemDTO,
    RelatorioConciliacaoDTO,
    RelatorioConcessoesDTO,
    ResultadoTransicao,
    StatusPedidoOutputDTO,
)
from .entities import (
    ConcessaoAcesso,
    DadosCliente,
    EventoStatus,
    ItemPedido,
    MetodoPagamento,
    OrigemEvento,
    PedidoEntity,
    ProdutoRef,
    ResultadoGateway,
    StatusPedido,
    TipoProduto,
)
from .events import (
    AcessoConcedidoEvent,
    CobrancaDesconhecidaEvent,
    FalhaConcessaoEvent,
    PedidoConcluidoEvent,
    PedidoCriadoEvent,
    PedidoStatusAlteradoEvent,
    TransicaoRejeitadaEvent,
)
from .exceptions import (
    CobrancaDesconhecidaError,
    FalhaConcessaoError,
    GatewayError,
    GatewayIndisponivelError,
    IdentidadeError,
    PagamentoRecusadoError,
)
from .ports import (
    CatalogoProdutos,
    ConcessaoRepository,
    EstrategiaTrilho,
    GatewayPagamento,
    PedidoRepository,
    ServicoBiblioteca,
    ServicoIdentidade,
    ServicoMatricula,
)

logger = logging.getLogger(__name__)


def _pedido_nao_encontrado(pedido_id: str) -> EntityNotFoundError:
    return EntityNotFoundError(
        f"Pedido {pedido_id} não encontrado",
        entity_type="Pedido",
        entity_id=pedido_id,
    )


# =============================================================================
# Concessão de acesso
# =============================================================================

class ConcederAcessoService:
    """
    Use Case: Liberar acesso aos produtos de um pedido pago.

    Idempotente: cada (pedido, produto) é concedido no máximo uma vez,
    mesmo com chamadas concorrentes (a unicidade no repositório decide).

    Fluxo:
    1. Ignorar pedidos que não estão CONCLUIDO com concessão pendente
    2. Para cada item ainda sem concessão: matricular/liberar download
    3. Registrar a concessão (registrar_se_ausente)
    4. Com todos os itens concedidos, desmarcar concessao_pendente

    Falhas nunca revertem o status do pedido: o pedido continua
    CONCLUIDO com concessao_pendente até a varredura conseguir.
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        concessao_repo: ConcessaoRepository,
        matricula: ServicoMatricula,
        biblioteca: ServicoBiblioteca,
        uow: UnitOfWork,
    ):
        self.pedido_repo = pedido_repo
        self.concessao_repo = concessao_repo
        self.matricula = matricula
        self.biblioteca = biblioteca
        self.uow = uow

    def execute(self, pedido_id: str) -> List[ConcessaoAcesso]:
        """
        Concede o que falta para o pedido.

        Returns:
            Concessões registradas nesta chamada

        Raises:
            EntityNotFoundError: Se pedido não existe
            FalhaConcessaoError: Se algum item não pôde ser concedido
        """
        pedido = self.pedido_repo.get_by_id(pedido_id)
        if not pedido:
            raise _pedido_nao_encontrado(pedido_id)

        if pedido.status != StatusPedido.CONCLUIDO or not pedido.concessao_pendente:
            return []

        if not pedido.usuario_id:
            self._falhar(pedido.id, "pedido pago sem usuário associado")

        novas: List[ConcessaoAcesso] = []
        falhas: List[str] = []

        for item in pedido.itens:
            if self.concessao_repo.existe(pedido.id, item.produto):
                continue

            try:
                self._liberar(pedido.usuario_id, item)
            except Exception as exc:
                logger.error(f"Falha ao liberar {item.produto} do pedido {pedido.id}: {exc}")
                falhas.append(f"{item.produto}: {exc}")
                continue

            concessao = ConcessaoAcesso.criar(pedido, item)
            if self.concessao_repo.registrar_se_ausente(concessao):
                novas.append(concessao)

        with self.uow:
            for concessao in novas:
                self.uow.publish_event(
                    AcessoConcedidoEvent(
                        aggregate_id=pedido.id,
                        usuario_id=concessao.usuario_id,
                        produto_tipo=concessao.produto.tipo.value,
                        produto_id=concessao.produto.produto_id,
                    )
                )

            if not falhas:
                with self.pedido_repo.travar(pedido.id) as atual:
                    if atual and atual.concessao_pendente:
                        atual.marcar_concessao_concluida()
                        self.pedido_repo.save(atual)

        if falhas:
            self._falhar(pedido.id, "; ".join(falhas))

        logger.info(f"Acesso concedido para o pedido {pedido.id} ({len(novas)} novos)")
        return novas

    def executar_ou_adiar(self, pedido_id: str) -> bool:
        """
        Concede acesso e, em caso de falha, deixa para a varredura.

        Returns:
            True se todos os acessos foram concedidos
        """
        try:
            self.execute(pedido_id)
        except FalhaConcessaoError as exc:
            logger.error(f"Concessão adiada para a varredura: {exc}")
            return False
        return True

    def _liberar(self, usuario_id: str, item: ItemPedido) -> None:
        if item.produto.tipo == TipoProduto.CURSO:
            self.matricula.garantir_matricula(usuario_id, item.produto.produto_id)
        else:
            self.biblioteca.garantir_liberacao(usuario_id, item.produto)

    def _falhar(self, pedido_id: str, motivo: str) -> None:
        with self.uow:
            self.uow.publish_event(FalhaConcessaoEvent(aggregate_id=pedido_id, motivo=motivo))
        raise FalhaConcessaoError(pedido_id, motivo)


# =============================================================================
# Máquina de estados
# =============================================================================

class AplicarTransicaoService:
    """
    Use Case: Aplicar um resultado de gateway a um pedido.

    É a única porta de entrada para mudança de status. Webhook,
    conciliação, resposta síncrona e cancelamento manual passam aqui.

    Fluxo (transação única, com lock do pedido):
    1. Carregar pedido com lock exclusivo
    2. Mapear resultado → (status, status_pagamento)
    3. Registrar EventoStatus (aceito ou rejeitado)
    4. Se aceito: aplicar transição e persistir
    5. Após commit: conceder acesso se chegou a CONCLUIDO

    Transições duplicadas ou ilegais não são erro: ficam no histórico
    com aceito=False e o chamador recebe efetivo=False.

    Example:
        service = AplicarTransicaoService(pedido_repo, uow, concessor)
        resultado = service.execute(
            pedido_id, ResultadoGateway.PAGO, OrigemEvento.WEBHOOK, payload
        )
        resultado.efetivo  # False se era um webhook repetido
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        uow: UnitOfWork,
        concessor: Optional[ConcederAcessoService] = None,
    ):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.concessor = concessor

    def execute(
        self,
        pedido_id: str,
        resultado: ResultadoGateway,
        origem: OrigemEvento,
        payload_bruto: Optional[Dict[str, Any]] = None,
        motivo: Optional[str] = None,
    ) -> ResultadoTransicao:
        """
        Raises:
            EntityNotFoundError: Se pedido não existe
        """
        status_novo, status_pagamento = resultado.destino

        with self.uow:
            with self.pedido_repo.travar(pedido_id) as pedido:
                if pedido is None:
                    raise _pedido_nao_encontrado(pedido_id)

                evento = EventoStatus.registrar(
                    pedido,
                    status_novo,
                    origem,
                    anterior=self.pedido_repo.ultimo_evento_status(pedido_id),
                    resultado=resultado,
                    payload=payload_bruto,
                )
                self.pedido_repo.adicionar_evento_status(evento)

                if evento.aceito:
                    self._aplicar(pedido, evento, status_pagamento, motivo)
                else:
                    self._rejeitar(pedido, evento)

        transicao = ResultadoTransicao(pedido=pedido, evento=evento, efetivo=evento.aceito)

        if transicao.concluiu and self.concessor is not None:
            self.concessor.executar_ou_adiar(pedido.id)
            transicao.pedido = self.pedido_repo.get_by_id(pedido.id) or pedido

        return transicao

    def _aplicar(self, pedido, evento, status_pagamento, motivo) -> None:
        pedido.aplicar_transicao(evento.status_novo, status_pagamento, motivo)
        self.pedido_repo.save(pedido)

        logger.info(
            f"Pedido {pedido.id}: {evento.status_anterior.value} -> "
            f"{evento.status_novo.value} ({evento.origem.value})"
        )

        self.uow.publish_event(
            PedidoStatusAlteradoEvent(
                aggregate_id=pedido.id,
                status_anterior=evento.status_anterior.value,
                status_novo=evento.status_novo.value,
                status_pagamento=pedido.status_pagamento.value,
                origem=evento.origem.value,
            )
        )

        if pedido.status == StatusPedido.CONCLUIDO:
            self.uow.publish_event(
                PedidoConcluidoEvent(
                    aggregate_id=pedido.id,
                    usuario_id=pedido.usuario_id,
                    email_cliente=pedido.cliente.email if pedido.cliente else None,
                    valor_total=pedido.valor_total,
                    metodo_pagamento=pedido.metodo_pagamento.value,
                )
            )

    def _rejeitar(self, pedido, evento) -> None:
        logger.warning(
            f"Transição rejeitada no pedido {pedido.id}: "
            f"{evento.status_anterior.value} -> {evento.status_novo.value} "
            f"({evento.motivo_rejeicao}, origem {evento.origem.value})"
        )
        self.uow.publish_event(
            TransicaoRejeitadaEvent(
                aggregate_id=pedido.id,
                status_atual=evento.status_anterior.value,
                status_pretendido=evento.status_novo.value,
                motivo=evento.motivo_rejeicao,
                origem=evento.origem.value,
            )
        )


# =============================================================================
# Checkout
# =============================================================================

class RetentarCobrancaService:
    """
    Use Case: Emitir a cobrança de um pedido que ainda não tem cobrança.

    Usado pelo checkout (primeira emissão), pelo cliente (nova tentativa)
    e pela conciliação (PIX/boleto cuja emissão falhou).

    A verificação "já tem cobrança?" e a gravação do cobranca_id
    acontecem sob o lock do pedido: duas tentativas simultâneas nunca
    emitem duas cobranças.

    Gateway indisponível deixa o pedido PENDENTE para nova tentativa.
    Recusa, ou gateway rejeitando os dados (ex: CPF inválido), é final:
    o pedido vai para CANCELADO e nenhuma varredura volta a cobrá-lo.
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        uow: UnitOfWork,
        gateway: GatewayPagamento,
        aplicar_transicao: AplicarTransicaoService,
    ):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.gateway = gateway
        self.aplicar_transicao = aplicar_transicao

    def execute(
        self,
        pedido_id: str,
        cartao: Optional[DadosCartaoDTO] = None,
        ip_remoto: Optional[str] = None,
    ) -> CheckoutOutputDTO:
        """
        Raises:
            EntityNotFoundError: Se pedido não existe
            ValidationError: Se cartão sem dados do cartão
        """
        cobranca = recusa = None
        erro_gateway = None

        with self.uow:
            with self.pedido_repo.travar(pedido_id) as pedido:
                if pedido is None:
                    raise _pedido_nao_encontrado(pedido_id)

                if pedido.esta_finalizado or pedido.tem_cobranca:
                    return CheckoutOutputDTO.from_entity(pedido)

                if pedido.metodo_pagamento == MetodoPagamento.CARTAO_CREDITO and cartao is None:
                    raise ValidationError("Dados do cartão são obrigatórios", field="cartao")

                try:
                    cobranca = self.gateway.criar_cobranca(pedido, cartao, ip_remoto)
                except GatewayIndisponivelError as exc:
                    logger.warning(f"Gateway indisponível ao cobrar pedido {pedido.id}: {exc}")
                    erro_gateway = exc.message
                except PagamentoRecusadoError as exc:
                    recusa = exc
                    if exc.cobranca_id:
                        pedido.registrar_cobranca(exc.cobranca_id)
                        self.pedido_repo.save(pedido)
                except GatewayError as exc:
                    logger.warning(f"Gateway rejeitou a cobrança do pedido {pedido.id}: {exc}")
                    recusa = PagamentoRecusadoError(
                        exc.message,
                        payload={"codigo": exc.code, "status_http": exc.status_http, "descricao": exc.message},
                    )
                else:
                    pedido.registrar_cobranca(
                        cobranca.cobranca_id,
                        pix_copia_e_cola=cobranca.pix_copia_e_cola,
                        pix_qr_code=cobranca.pix_qr_code,
                        pix_expira_em=cobranca.pix_expira_em,
                        boleto_url=cobranca.boleto_url,
                        boleto_codigo_barras=cobranca.boleto_codigo_barras,
                    )
                    self.pedido_repo.save(pedido)
                    logger.info(f"Cobrança {cobranca.cobranca_id} emitida para o pedido {pedido.id}")

        if recusa is not None:
            logger.warning(f"Pagamento do pedido {pedido.id} recusado: {recusa.motivo}")
            transicao = self.aplicar_transicao.execute(
                pedido.id,
                ResultadoGateway.RECUSADO,
                OrigemEvento.RESPOSTA_SINCRONA,
                payload_bruto=recusa.payload or {"motivo": recusa.motivo},
                motivo=recusa.motivo,
            )
            return CheckoutOutputDTO.from_entity(transicao.pedido, recusado=True)

        if cobranca is None:
            return CheckoutOutputDTO.from_entity(pedido, erro_gateway=erro_gateway)

        recusado = False
        if cobranca.resultado != ResultadoGateway.PENDENTE:
            recusado = cobranca.resultado == ResultadoGateway.RECUSADO
            transicao = self.aplicar_transicao.execute(
                pedido.id,
                cobranca.resultado,
                OrigemEvento.RESPOSTA_SINCRONA,
                payload_bruto=cobranca.payload,
                motivo=f"Pagamento recusado ({cobranca.status_bruto})" if recusado else None,
            )
            pedido = transicao.pedido

        return CheckoutOutputDTO.from_entity(
            pedido,
            vencimento=cobranca.vencimento,
            status_cobranca=cobranca.status_bruto,
            recusado=recusado,
        )


class CriarCheckoutService:
    """
    Use Case: Checkout completo de cursos, papers e e-books.

    Fluxo:
    1. Validar itens no catálogo (preço sempre do catálogo)
    2. Persistir pedido PENDENTE
    3. Visitante com senha: criar conta e sessão (falha não bloqueia)
    4. Emitir cobrança (RetentarCobrancaService)
    5. Retornar DTO discriminado pelo método de pagamento

    Erros do gateway nunca são lançados: indisponibilidade deixa o pedido
    PENDENTE e recusa leva o pedido a CANCELADO; ambos vão no DTO.

    Example:
        output = service.execute(CriarCheckoutInputDTO.from_dict(request_json))
        if output.recusado:
            ...  # mostrar output.motivo_recusa
    """

    NUMERO_CARTAO_REGEX = re.compile(r"^\d{13,19}$")
    CVV_REGEX = re.compile(r"^\d{3,4}$")

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        uow: UnitOfWork,
        catalogo: CatalogoProdutos,
        identidade: ServicoIdentidade,
        emissor: RetentarCobrancaService,
    ):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.catalogo = catalogo
        self.identidade = identidade
        self.emissor = emissor

    def execute(self, input_dto: CriarCheckoutInputDTO) -> CheckoutOutputDTO:
        """
        Raises:
            ValidationError: Se dados do checkout inválidos (nada persistido)
        """
        pedido = self._montar_pedido(input_dto)

        with self.uow:
            self.pedido_repo.save(pedido)
            self.uow.publish_event(
                PedidoCriadoEvent(
                    aggregate_id=pedido.id,
                    usuario_id=pedido.usuario_id,
                    metodo_pagamento=pedido.metodo_pagamento.value,
                    valor_total=pedido.valor_total,
                    produtos=[item.produto.chave for item in pedido.itens],
                )
            )

        logger.info(
            f"Pedido {pedido.id} criado: {pedido.metodo_pagamento.value}, "
            f"{pedido.valor_total} centavos, {len(pedido.itens)} itens"
        )

        sessao = erro_identidade = None
        if input_dto.visitante and input_dto.senha:
            sessao, erro_identidade = self._elevar_identidade(pedido, input_dto.senha)

        output = self.emissor.execute(pedido.id, input_dto.cartao, input_dto.ip_remoto)
        return replace(output, sessao=sessao, erro_identidade=erro_identidade)

    # -------------------------------------------------------------------------
    # Validação
    # -------------------------------------------------------------------------

    def _montar_pedido(self, input_dto: CriarCheckoutInputDTO) -> PedidoEntity:
        try:
            metodo = MetodoPagamento.from_string(input_dto.metodo_pagamento)
        except ValueError:
            raise ValidationError(
                f"Método de pagamento inválido: {input_dto.metodo_pagamento}",
                field="metodo_pagamento",
            )

        if not input_dto.itens:
            raise ValidationError("Pedido deve ter ao menos um item", field="itens")

        itens = [self._item_do_catalogo(item_dto.tipo, item_dto.produto_id) for item_dto in input_dto.itens]

        if metodo == MetodoPagamento.CARTAO_CREDITO:
            self._validar_cartao(input_dto.cartao)

        cliente = DadosCliente.criar(**input_dto.cliente.to_dict())

        return PedidoEntity.criar(
            itens=itens,
            metodo_pagamento=metodo,
            cliente=cliente,
            usuario_id=input_dto.usuario_id,
            parcelas=input_dto.parcelas,
        )

    def _item_do_catalogo(self, tipo: str, produto_id: str) -> ItemPedido:
        try:
            tipo_produto = TipoProduto.from_string(tipo)
        except ValueError:
            raise ValidationError(f"Tipo de produto inválido: {tipo}", field="itens")

        if not produto_id:
            raise ValidationError("produto_id é obrigatório", field="itens")

        produto = ProdutoRef(tipo_produto, produto_id)
        if not self.catalogo.produto_existe(produto):
            raise ValidationError(f"Produto {produto} não encontrado", field="itens")

        return ItemPedido(
            produto=produto,
            titulo=self.catalogo.titulo(produto),
            preco_centavos=self.catalogo.preco_atual(produto),
        )

    def _validar_cartao(self, cartao: Optional[DadosCartaoDTO]) -> None:
        if cartao is None:
            raise ValidationError("Dados do cartão são obrigatórios", field="cartao")
        if not cartao.titular.strip():
            raise ValidationError("Nome do titular é obrigatório", field="cartao")
        if not self.NUMERO_CARTAO_REGEX.match(cartao.numero):
            raise ValidationError("Número do cartão inválido", field="cartao")
        if not self.CVV_REGEX.match(cartao.cvv):
            raise ValidationError("CVV inválido", field="cartao")
        if not (cartao.mes_validade.isdigit() and 1 <= int(cartao.mes_validade) <= 12):
            raise ValidationError("Mês de validade inválido", field="cartao")
        if not (cartao.ano_validade.isdigit() and len(cartao.ano_validade) in (2, 4)):
            raise ValidationError("Ano de validade inválido", field="cartao")

    # -------------------------------------------------------------------------
    # Identidade
    # -------------------------------------------------------------------------

    def _elevar_identidade(self, pedido: PedidoEntity, senha: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Cria conta e sessão do visitante e associa ao pedido.

        Returns:
            (token da sessão, None) em caso de sucesso ou
            (None, mensagem de erro) em caso de falha
        """
        cliente = pedido.cliente
        try:
            usuario_id = self.identidade.criar_usuario(cliente.email, senha, cliente.nome)
            sessao = self.identidade.emitir_sessao(usuario_id)
        except IdentidadeError as exc:
            logger.warning(f"Conta não criada no checkout do pedido {pedido.id}: {exc}")
            return None, exc.message
        except Exception as exc:
            logger.exception(f"Erro inesperado ao criar conta no pedido {pedido.id}: {exc}")
            return None, "Não foi possível criar sua conta agora"

        with self.uow:
            with self.pedido_repo.travar(pedido.id) as atual:
                atual.vincular_usuario(usuario_id)
                self.pedido_repo.save(atual)

        logger.info(f"Visitante do pedido {pedido.id} elevado ao usuário {usuario_id}")
        return sessao, None


# =============================================================================
# Webhooks
# =============================================================================

class ProcessarWebhookService:
    """
    Use Case: Processar webhook de um trilho de pagamento.

    Fluxo:
    1. Escolher a estratégia pelo nome do trilho
    2. Verificar autenticidade (antes de qualquer leitura de estado)
    3. Classificar payload em NotificacaoGateway
    4. Localizar pedido pela cobrança
    5. Aplicar transição (origem webhook)

    Raises (propagados para a view):
        ValidationError: Trilho desconhecido ou corpo malformado
        AssinaturaInvalidaError: Webhook não autêntico
        CobrancaDesconhecidaError: Cobrança sem pedido
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        uow: UnitOfWork,
        estrategias: Mapping[str, EstrategiaTrilho],
        aplicar_transicao: AplicarTransicaoService,
    ):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.estrategias = estrategias
        self.aplicar_transicao = aplicar_transicao

    def execute(self, trilho: str, cabecalhos: Mapping[str, str], corpo: bytes) -> ResultadoTransicao:
        estrategia = self.estrategias.get(trilho)
        if estrategia is None:
            raise ValidationError(f"Trilho desconhecido: {trilho}", field="trilho")

        estrategia.verificar(cabecalhos, corpo)

        try:
            payload = json.loads(corpo or b"{}")
        except ValueError:
            raise ValidationError("Corpo do webhook não é JSON válido", field="corpo")
        if not isinstance(payload, dict):
            raise ValidationError("Corpo do webhook deve ser um objeto", field="corpo")

        notificacao = estrategia.classificar(payload)
        pedido_id = self._localizar_pedido(notificacao)

        return self.aplicar_transicao.execute(
            pedido_id,
            notificacao.resultado,
            OrigemEvento.WEBHOOK,
            payload_bruto=notificacao.payload,
        )

    def _localizar_pedido(self, notificacao: NotificacaoGateway) -> str:
        pedido = self.pedido_repo.get_by_cobranca_id(notificacao.cobranca_id)
        if pedido:
            return pedido.id

        # Cobrança emitida cuja resposta se perdeu (timeout na criação):
        # o pedido ainda sem cobrança adota a cobrança da referência externa
        if notificacao.referencia_externa:
            adotado = self._adotar_cobranca(notificacao)
            if adotado:
                return adotado

        logger.error(
            f"Webhook {notificacao.trilho} para cobrança desconhecida "
            f"{notificacao.cobranca_id} ({notificacao.status_bruto})"
        )
        with self.uow:
            self.uow.publish_event(
                CobrancaDesconhecidaEvent(
                    aggregate_id=notificacao.cobranca_id,
                    trilho=notificacao.trilho,
                    status_bruto=notificacao.status_bruto,
                )
            )
        raise CobrancaDesconhecidaError(notificacao.cobranca_id, notificacao.trilho)

    def _adotar_cobranca(self, notificacao: NotificacaoGateway) -> Optional[str]:
        adotado = None
        with self.uow:
            with self.pedido_repo.travar(notificacao.referencia_externa) as pedido:
                if pedido is None or pedido.metodo_pagamento.trilho != notificacao.trilho:
                    return None

                if pedido.cobranca_id == notificacao.cobranca_id:
                    adotado = pedido.id
                elif notificacao.parcelamento_id and pedido.parcelas > 1 and pedido.tem_cobranca:
                    # Demais parcelas do mesmo parcelamento: o pedido segue a
                    # cobrança da primeira; estas só entram no histórico
                    logger.info(
                        f"Pedido {pedido.id}: parcela {notificacao.cobranca_id} "
                        f"do parcelamento {notificacao.parcelamento_id}"
                    )
                    adotado = pedido.id
                elif not pedido.tem_cobranca:
                    if not pedido.esta_finalizado:
                        pedido.registrar_cobranca(notificacao.cobranca_id)
                        self.pedido_repo.save(pedido)
                        logger.info(
                            f"Pedido {pedido.id} adotou a cobrança {notificacao.cobranca_id}"
                        )
                    adotado = pedido.id
        return adotado


# =============================================================================
# Concessões e conta
# =============================================================================

class ReprocessarConcessoesService:
    """
    Use Case: Varredura de pedidos pagos com concessão pendente.

    Executado periodicamente pelo Celery beat.
    """

    def __init__(self, pedido_repo: PedidoRepository, concessor: ConcederAcessoService):
        self.pedido_repo = pedido_repo
        self.concessor = concessor

    def execute(self, limite: int = 100) -> RelatorioConcessoesDTO:
        relatorio = RelatorioConcessoesDTO()

        for pedido in self.pedido_repo.list_concessao_pendente(limite):
            relatorio.processados += 1
            try:
                self.concessor.execute(pedido.id)
            except FalhaConcessaoError as exc:
                relatorio.falhas += 1
                logger.warning(f"Concessão ainda pendente: {exc}")
            else:
                relatorio.concluidos += 1

        if relatorio.processados:
            logger.info(f"Reprocessamento de concessões: {relatorio.to_dict()}")
        return relatorio


class VincularUsuarioService:
    """
    Use Case: Associar conta a um pedido de visitante.

    Destrava a concessão de pedidos pagos cuja criação de conta falhou
    no checkout.
    """

    def __init__(self, pedido_repo: PedidoRepository, uow: UnitOfWork, concessor: ConcederAcessoService):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.concessor = concessor

    def execute(self, pedido_id: str, usuario_id: str) -> StatusPedidoOutputDTO:
        """
        Raises:
            EntityNotFoundError: Se pedido não existe
            BusinessRuleViolationError: Se o pedido pertence a outro usuário
        """
        with self.uow:
            with self.pedido_repo.travar(pedido_id) as pedido:
                if pedido is None:
                    raise _pedido_nao_encontrado(pedido_id)
                pedido.vincular_usuario(usuario_id)
                self.pedido_repo.save(pedido)

        if pedido.concessao_pendente:
            self.concessor.executar_ou_adiar(pedido.id)
            pedido = self.pedido_repo.get_by_id(pedido.id) or pedido

        return StatusPedidoOutputDTO.from_entity(pedido)


# =============================================================================
# Administração
# =============================================================================

class CancelarPedidoService:
    """
    Use Case: Cancelamento manual de pedido (admin).

    Passa pela máquina de estados (origem manual) e depois tenta
    cancelar a cobrança no gateway, sem falhar se o gateway não responder.
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        gateway: GatewayPagamento,
        aplicar_transicao: AplicarTransicaoService,
    ):
        self.pedido_repo = pedido_repo
        self.gateway = gateway
        self.aplicar_transicao = aplicar_transicao

    def execute(self, pedido_id: str, motivo: str, solicitado_por: Optional[str] = None) -> ResultadoTransicao:
        if not motivo or not motivo.strip():
            raise ValidationError("Motivo do cancelamento é obrigatório", field="motivo")

        transicao = self.aplicar_transicao.execute(
            pedido_id,
            ResultadoGateway.CANCELADO,
            OrigemEvento.MANUAL,
            payload_bruto={"motivo": motivo, "solicitado_por": solicitado_por},
            motivo=motivo,
        )

        if transicao.efetivo and transicao.pedido.tem_cobranca:
            try:
                self.gateway.cancelar_cobranca(transicao.pedido.cobranca_id)
            except GatewayError as exc:
                logger.warning(
                    f"Cobrança {transicao.pedido.cobranca_id} não cancelada no gateway: {exc}"
                )

        return transicao


class ConciliarPedidosService:
    """
    Use Case: Conciliação de pedidos parados (webhook perdido).

    Seleciona pedidos PENDENTE/PROCESSANDO mais velhos que o limiar do
    seu método, começando pelos verificados há mais tempo.

    Para cada pedido:
    - Com cobrança: consulta o gateway e aplica o resultado (origem poll)
    - Sem cobrança, PIX/boleto: reemite a cobrança
    - Sem cobrança, cartão: cancela (dados do cartão não são guardados)

    Falha de gateway em um pedido não interrompe a varredura.
    """

    def __init__(
        self,
        pedido_repo: PedidoRepository,
        uow: UnitOfWork,
        gateway: GatewayPagamento,
        aplicar_transicao: AplicarTransicaoService,
        emissor: RetentarCobrancaService,
        configuracao: ConfiguracaoConciliacao,
    ):
        self.pedido_repo = pedido_repo
        self.uow = uow
        self.gateway = gateway
        self.aplicar_transicao = aplicar_transicao
        self.emissor = emissor
        self.configuracao = configuracao

    def execute(self, momento: Optional[datetime] = None) -> RelatorioConciliacaoDTO:
        momento = momento or agora()
        relatorio = RelatorioConciliacaoDTO()

        pedidos = self.pedido_repo.list_aguardando_confirmacao(
            self.configuracao.cortes(momento),
            self.configuracao.lote,
        )

        for pedido in pedidos:
            relatorio.verificados += 1
            try:
                self._conciliar(pedido, relatorio)
            except GatewayIndisponivelError as exc:
                relatorio.falhas += 1
                logger.warning(f"Conciliação do pedido {pedido.id} falhou: {exc}")
            except (CobrancaDesconhecidaError, GatewayError) as exc:
                relatorio.falhas += 1
                logger.error(f"Conciliação do pedido {pedido.id}: {exc}")
            finally:
                # pedido com falha também vai para o fim da fila
                self._marcar_verificado(pedido.id, momento)

        logger.info(f"Conciliação concluída: {relatorio.to_dict()}")
        return relatorio

    def _conciliar(self, pedido: PedidoEntity, relatorio: RelatorioConciliacaoDTO) -> None:
        if pedido.tem_cobranca:
            notificacao = self.gateway.consultar_cobranca(pedido.cobranca_id)
            status_destino, _ = notificacao.resultado.destino
            if status_destino == pedido.status:
                return  # nada mudou no gateway

            transicao = self.aplicar_transicao.execute(
                pedido.id,
                notificacao.resultado,
                OrigemEvento.CONCILIACAO,
                payload_bruto=notificacao.payload,
            )
            if transicao.efetivo:
                relatorio.transicoes += 1
            return

        if pedido.metodo_pagamento.sincrono:
            transicao = self.aplicar_transicao.execute(
                pedido.id,
                ResultadoGateway.CANCELADO,
                OrigemEvento.CONCILIACAO,
                payload_bruto={"motivo": "cobranca_nao_emitida"},
                motivo="Cobrança no cartão não foi emitida",
            )
            if transicao.efetivo:
                relatorio.cancelados_sem_cobranca += 1
            return

        output = self.emissor.execute(pedido.id)
        if output.recusado:
            relatorio.cancelados_sem_cobranca += 1
        elif output.erro_gateway:
            relatorio.falhas += 1
        elif output.pix or output.boleto:
            relatorio.cobrancas_reemitidas += 1

    def _marcar_verificado(self, pedido_id: str, momento: datetime) -> None:
        with self.uow:
            with self.pedido_repo.travar(pedido_id) as pedido:
                if pedido is not None and not pedido.esta_finalizado:
                    pedido.marcar_verificado(momento)
                    self.pedido_repo.save(pedido)


# =============================================================================
# Consultas
# =============================================================================

class ObterStatusPedidoService:
    """
    Use Case: Status do pedido para o polling do cliente.

    Pedido com dono só é visível para o próprio dono (ou irrestrito,
    para a equipe). Para os demais o pedido não existe.
    """

    def __init__(self, pedido_repo: PedidoRepository):
        self.pedido_repo = pedido_repo

    def execute(
        self,
        pedido_id: str,
        solicitante_id: Optional[str] = None,
        irrestrito: bool = False,
    ) -> StatusPedidoOutputDTO:
        pedido = self.pedido_repo.get_by_id(pedido_id)
        if not pedido:
            raise _pedido_nao_encontrado(pedido_id)
        if pedido.usuario_id and not irrestrito and pedido.usuario_id != solicitante_id:
            logger.warning(f"Status do pedido {pedido_id} negado ao solicitante {solicitante_id}")
            raise _pedido_nao_encontrado(pedido_id)
        return StatusPedidoOutputDTO.from_entity(pedido)


class ListarPedidosService:
    """
    Use Case: Listar pedidos com filtros e paginação.

    Sem usuario_id lista todos (admin).
    """

    LIMITE_MAXIMO = 100

    def __init__(self, pedido_repo: PedidoRepository):
        self.pedido_repo = pedido_repo

    def execute(
        self,
        usuario_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limite: int = 20,
    ) -> Tuple[List[PedidoListItemDTO], int]:
        filtro_status = None
        if status:
            try:
                filtro_status = StatusPedido.from_string(status)
            except ValueError:
                raise ValidationError(f"Status inválido: {status}", field="status")

        limite = max(1, min(limite, self.LIMITE_MAXIMO))
        offset = max(0, offset)

        pedidos, total = self.pedido_repo.listar(
            usuario_id=usuario_id,
            status=filtro_status,
            offset=offset,
            limite=limite,
        )
        return [PedidoListItemDTO.from_entity(p) for p in pedidos], total


class ObterHistoricoPedidoService:
    """Use Case: Trilha de auditoria (EventoStatus em ordem de sequência)."""

    def __init__(self, pedido_repo: PedidoRepository):
        self.pedido_repo = pedido_repo

    def execute(self, pedido_id: str) -> List[EventoStatus]:
        if not self.pedido_repo.get_by_id(pedido_id):
            raise _pedido_nao_encontrado(pedido_id)
        return self.pedido_repo.listar_eventos_status(pedido_id)
