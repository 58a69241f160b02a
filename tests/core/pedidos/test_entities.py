"""
Testes Unitários para Entidades do Domínio de Pedidos.

Coverage:
- DadosCliente: validação e normalização
- PedidoEntity: criação, soma dos itens, máquina de estados, cobrança
- EventoStatus: sequência e timestamps monotônicos
- ConcessaoAcesso e conversões de enums
"""

from datetime import timedelta

import pytest

from src.core.pedidos.config import ConfiguracaoConciliacao
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
    TRANSICOES_VALIDAS,
    MOTIVO_DUPLICADO,
    MOTIVO_TRANSICAO_ILEGAL,
)
from src.core.pedidos.exceptions import TransicaoIlegalError
from src.core.shared.exceptions import BusinessRuleViolationError, ValidationError
from src.core.shared.tempo import agora


CURSO = ProdutoRef(TipoProduto.CURSO, 'metodologia-cientifica')
EBOOK = ProdutoRef(TipoProduto.EBOOK, 'escrita-academica')


@pytest.fixture
def cliente():
    return DadosCliente.criar('Maria da Silva', 'maria@exemplo.com.br', '12345678909')


@pytest.fixture
def itens():
    return [
        ItemPedido(CURSO, 'Curso de Metodologia Científica', 19900),
        ItemPedido(EBOOK, 'E-book Escrita Acadêmica', 4990),
    ]


@pytest.fixture
def pedido(itens, cliente):
    return PedidoEntity.criar(itens, MetodoPagamento.PIX, cliente, usuario_id='user-1')


class TestDadosCliente:
    """Testes de validação dos dados de cobrança."""

    def test_normaliza_documento_e_email(self):
        """Deve manter só dígitos no CPF e email em minúsculas."""
        cliente = DadosCliente.criar(
            '  Maria da Silva ', 'MARIA@Exemplo.com.br ', '123.456.789-09',
            telefone='(11) 98888-7777',
        )

        assert cliente.nome == 'Maria da Silva'
        assert cliente.email == 'maria@exemplo.com.br'
        assert cliente.cpf_cnpj == '12345678909'
        assert cliente.telefone == '11988887777'

    def test_aceita_cnpj(self):
        cliente = DadosCliente.criar('Editora LN', 'contato@ln.com.br', '12.345.678/0001-90')
        assert cliente.cpf_cnpj == '12345678000190'

    @pytest.mark.parametrize('nome,email,documento,campo', [
        ('Ma', 'maria@exemplo.com', '12345678909', 'nome'),
        ('Maria', 'maria-sem-arroba', '12345678909', 'email'),
        ('Maria', 'maria@exemplo.com', '1234', 'cpf_cnpj'),
    ])
    def test_rejeita_dados_invalidos(self, nome, email, documento, campo):
        """Deve apontar o campo inválido."""
        with pytest.raises(ValidationError) as exc:
            DadosCliente.criar(nome, email, documento)

        assert exc.value.field == campo


class TestCriarPedido:
    """Testes do factory PedidoEntity.criar."""

    def test_total_igual_soma_dos_itens(self, pedido):
        """Deve congelar o total como soma dos itens."""
        assert pedido.valor_total == 19900 + 4990
        assert pedido.valor_total == sum(item.preco_centavos for item in pedido.itens)
        assert pedido.status == StatusPedido.PENDENTE
        assert pedido.status_pagamento == StatusPagamento.PENDENTE
        assert pedido.cobranca_id is None
        assert not pedido.concessao_pendente

    def test_itens_sao_imutaveis(self, pedido):
        assert isinstance(pedido.itens, tuple)
        with pytest.raises(AttributeError):
            pedido.itens[0].preco_centavos = 1

    def test_total_divergente_rejeitado(self, itens):
        """Deve recusar reconstruir pedido com total diferente da soma."""
        with pytest.raises(BusinessRuleViolationError) as exc:
            PedidoEntity(itens=itens, valor_total=100)

        assert exc.value.rule == 'valor_total_igual_soma_itens'

    def test_sem_itens(self, cliente):
        with pytest.raises(ValidationError) as exc:
            PedidoEntity.criar([], MetodoPagamento.PIX, cliente)
        assert exc.value.field == 'itens'

    def test_produto_repetido(self, cliente):
        item = ItemPedido(CURSO, 'Curso', 19900)
        with pytest.raises(ValidationError):
            PedidoEntity.criar([item, item], MetodoPagamento.PIX, cliente)

    def test_preco_nao_positivo(self, cliente):
        with pytest.raises(ValidationError):
            PedidoEntity.criar([ItemPedido(CURSO, 'Curso', 0)], MetodoPagamento.PIX, cliente)

    def test_parcelas_fora_do_intervalo(self, itens, cliente):
        with pytest.raises(ValidationError) as exc:
            PedidoEntity.criar(itens, MetodoPagamento.CARTAO_CREDITO, cliente, parcelas=13)
        assert exc.value.field == 'parcelas'

    def test_parcelamento_apenas_no_cartao(self, itens, cliente):
        """Deve recusar parcelas em PIX/boleto."""
        with pytest.raises(ValidationError):
            PedidoEntity.criar(itens, MetodoPagamento.BOLETO, cliente, parcelas=3)

        pedido = PedidoEntity.criar(itens, MetodoPagamento.CARTAO_CREDITO, cliente, parcelas=3)
        assert pedido.parcelas == 3

    def test_visitante_sem_usuario(self, itens, cliente):
        pedido = PedidoEntity.criar(itens, MetodoPagamento.PIX, cliente, usuario_id='')
        assert pedido.usuario_id is None


class TestMaquinaDeEstados:
    """Testes da tabela de transições."""

    @pytest.mark.parametrize('atual', list(StatusPedido))
    @pytest.mark.parametrize('destino', list(StatusPedido))
    def test_avaliar_transicao_segue_tabela(self, pedido, atual, destino):
        """Deve aceitar apenas as arestas da tabela."""
        pedido.status = atual
        motivo = pedido.avaliar_transicao(destino)

        if atual == destino:
            assert motivo == MOTIVO_DUPLICADO
        elif destino in TRANSICOES_VALIDAS[atual]:
            assert motivo is None
        else:
            assert motivo == MOTIVO_TRANSICAO_ILEGAL

    def test_terminais_nao_tem_saida(self):
        assert TRANSICOES_VALIDAS[StatusPedido.CONCLUIDO] == frozenset()
        assert TRANSICOES_VALIDAS[StatusPedido.CANCELADO] == frozenset()
        assert StatusPedido.CONCLUIDO.terminal
        assert not StatusPedido.PROCESSANDO.terminal

    def test_conclusao_marca_concessao_pendente(self, pedido):
        """Deve marcar concessao_pendente ao chegar em CONCLUIDO."""
        pedido.aplicar_transicao(StatusPedido.CONCLUIDO, StatusPagamento.CONFIRMADO)

        assert pedido.status == StatusPedido.CONCLUIDO
        assert pedido.status_pagamento == StatusPagamento.CONFIRMADO
        assert pedido.concessao_pendente
        assert pedido.esta_finalizado

    def test_cancelamento_guarda_motivo(self, pedido):
        pedido.aplicar_transicao(StatusPedido.CANCELADO, StatusPagamento.FALHOU, 'Sem limite')
        assert pedido.motivo_recusa == 'Sem limite'

    def test_caminho_via_processando(self, pedido):
        pedido.aplicar_transicao(StatusPedido.PROCESSANDO, StatusPagamento.PROCESSANDO)
        pedido.aplicar_transicao(StatusPedido.CONCLUIDO, StatusPagamento.CONFIRMADO)
        assert pedido.status == StatusPedido.CONCLUIDO

    def test_mutacao_direta_ilegal_lanca(self, pedido):
        """Deve lançar TransicaoIlegalError em mutação direta proibida."""
        pedido.aplicar_transicao(StatusPedido.CONCLUIDO, StatusPagamento.CONFIRMADO)

        with pytest.raises(TransicaoIlegalError) as exc:
            pedido.aplicar_transicao(StatusPedido.PENDENTE, StatusPagamento.PENDENTE)

        assert exc.value.motivo == MOTIVO_TRANSICAO_ILEGAL
        assert pedido.status == StatusPedido.CONCLUIDO

    @pytest.mark.parametrize('resultado,status', [
        (ResultadoGateway.PAGO, StatusPedido.CONCLUIDO),
        (ResultadoGateway.PENDENTE, StatusPedido.PENDENTE),
        (ResultadoGateway.EM_PROCESSAMENTO, StatusPedido.PROCESSANDO),
        (ResultadoGateway.RECUSADO, StatusPedido.CANCELADO),
        (ResultadoGateway.EXPIRADO, StatusPedido.CANCELADO),
        (ResultadoGateway.ESTORNADO, StatusPedido.CANCELADO),
        (ResultadoGateway.CANCELADO, StatusPedido.CANCELADO),
    ])
    def test_destino_dos_resultados(self, resultado, status):
        assert resultado.destino[0] == status


class TestCobranca:
    """Testes de registro da cobrança."""

    def test_registrar_cobranca(self, pedido):
        pedido.registrar_cobranca('pay_1', pix_copia_e_cola='000201...')

        assert pedido.tem_cobranca
        assert pedido.cobranca_id == 'pay_1'
        assert pedido.pix_copia_e_cola == '000201...'

    def test_mesma_cobranca_e_idempotente(self, pedido):
        pedido.registrar_cobranca('pay_1')
        pedido.registrar_cobranca('pay_1')
        assert pedido.cobranca_id == 'pay_1'

    def test_segunda_cobranca_rejeitada(self, pedido):
        """Deve impedir substituir uma cobrança já emitida."""
        pedido.registrar_cobranca('pay_1')

        with pytest.raises(BusinessRuleViolationError) as exc:
            pedido.registrar_cobranca('pay_2')

        assert exc.value.rule == 'cobranca_unica'

    def test_pedido_finalizado_imutavel(self, pedido):
        pedido.aplicar_transicao(StatusPedido.CANCELADO, StatusPagamento.CANCELADO)

        with pytest.raises(BusinessRuleViolationError) as exc:
            pedido.registrar_cobranca('pay_1')

        assert exc.value.rule == 'pedido_imutavel'

    def test_marcar_verificado_ignora_finalizado(self, pedido):
        pedido.aplicar_transicao(StatusPedido.CONCLUIDO, StatusPagamento.CONFIRMADO)
        pedido.marcar_verificado()
        assert pedido.verificado_em is None


class TestVincularUsuario:
    def test_visitante_recebe_usuario(self, itens, cliente):
        pedido = PedidoEntity.criar(itens, MetodoPagamento.PIX, cliente)
        pedido.vincular_usuario('user-9')
        assert pedido.usuario_id == 'user-9'

    def test_outro_dono_rejeitado(self, pedido):
        with pytest.raises(BusinessRuleViolationError) as exc:
            pedido.vincular_usuario('user-2')
        assert exc.value.rule == 'dono_do_pedido'


class TestEventoStatus:
    """Testes do histórico append-only."""

    def test_primeiro_evento(self, pedido):
        evento = EventoStatus.registrar(pedido, StatusPedido.CONCLUIDO, OrigemEvento.WEBHOOK)

        assert evento.sequencia == 1
        assert evento.status_anterior == StatusPedido.PENDENTE
        assert evento.aceito
        assert evento.motivo_rejeicao is None

    def test_sequencia_e_timestamp_monotonicos(self, pedido):
        """Timestamp nunca é menor que o do evento anterior."""
        anterior = EventoStatus.registrar(
            pedido, StatusPedido.PROCESSANDO, OrigemEvento.WEBHOOK,
            momento=agora() + timedelta(hours=1),
        )

        evento = EventoStatus.registrar(
            pedido, StatusPedido.CONCLUIDO, OrigemEvento.CONCILIACAO, anterior=anterior,
        )

        assert evento.sequencia == 2
        assert evento.ocorrido_em >= anterior.ocorrido_em

    def test_duplicado_registrado_como_rejeitado(self, pedido):
        evento = EventoStatus.registrar(
            pedido, StatusPedido.PENDENTE, OrigemEvento.WEBHOOK,
            payload={'event': 'PAYMENT_CREATED'},
        )

        assert not evento.aceito
        assert evento.motivo_rejeicao == MOTIVO_DUPLICADO
        assert evento.payload_bruto == {'event': 'PAYMENT_CREATED'}

    def test_to_dict(self, pedido):
        evento = EventoStatus.registrar(
            pedido, StatusPedido.CONCLUIDO, OrigemEvento.WEBHOOK,
            resultado=ResultadoGateway.PAGO,
        )
        data = evento.to_dict()

        assert data['status_novo'] == 'COMPLETED'
        assert data['origem'] == 'webhook'
        assert data['resultado_gateway'] == 'PAID'


class TestConcessaoAcesso:
    def test_requer_usuario(self, itens, cliente):
        pedido = PedidoEntity.criar(itens, MetodoPagamento.PIX, cliente)

        with pytest.raises(BusinessRuleViolationError) as exc:
            ConcessaoAcesso.criar(pedido, pedido.itens[0])

        assert exc.value.rule == 'concessao_requer_usuario'

    def test_cria_para_dono(self, pedido):
        concessao = ConcessaoAcesso.criar(pedido, pedido.itens[0])
        assert concessao.usuario_id == 'user-1'
        assert concessao.produto == CURSO


class TestEnums:
    @pytest.mark.parametrize('texto', ['PIX', 'pix', 'Pix'])
    def test_metodo_por_valor(self, texto):
        assert MetodoPagamento.from_string(texto) == MetodoPagamento.PIX

    def test_status_por_nome_ou_valor(self):
        assert StatusPedido.from_string('CONCLUIDO') == StatusPedido.CONCLUIDO
        assert StatusPedido.from_string('completed') == StatusPedido.CONCLUIDO

    def test_valor_invalido(self):
        with pytest.raises(ValueError):
            TipoProduto.from_string('podcast')

    def test_trilhos(self):
        assert MetodoPagamento.CARTAO_CREDITO.trilho == 'cartao'
        assert MetodoPagamento.CARTAO_CREDITO.sincrono
        assert not MetodoPagamento.BOLETO.sincrono


class TestConfiguracaoConciliacao:
    """Limiares vindos das settings."""

    def test_from_dict(self):
        config = ConfiguracaoConciliacao.from_dict({
            'cartao_minutos': 30, 'pix_horas': 2, 'boleto_dias': 3, 'lote': 10,
        })

        assert config.limiar_cartao == timedelta(minutes=30)
        assert config.limiar_pix == timedelta(hours=2)
        assert config.limiar_boleto == timedelta(days=3)
        assert config.lote == 10

    def test_padroes(self):
        config = ConfiguracaoConciliacao.from_dict({})
        assert config.limiar_cartao == timedelta(minutes=15)
        assert config.limiar_pix == timedelta(hours=1)
        assert config.limiar_boleto == timedelta(days=1)
        assert config.lote == 100

    def test_cortes_por_metodo(self):
        momento = agora()
        cortes = ConfiguracaoConciliacao().cortes(momento)

        assert cortes[MetodoPagamento.CARTAO_CREDITO] == momento - timedelta(minutes=15)
        assert cortes[MetodoPagamento.BOLETO] == momento - timedelta(days=1)
