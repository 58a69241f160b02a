"""
Testes do adapter Asaas.

AsaasClient é testado com uma sessão requests falsa (Mock);
AsaasGateway com um Mock(spec=AsaasClient).
"""

import json
import logging
from datetime import timedelta
from unittest.mock import Mock

import pytest
import requests

from src.adapters.gateways.asaas import (
    AsaasClient,
    AsaasGateway,
    FUSO_ASAAS,
    centavos_para_reais,
    classificar_evento,
    classificar_status,
)
from src.core.pedidos.dtos import DadosCartaoDTO
from src.core.pedidos.entities import (
    DadosCliente,
    ItemPedido,
    MetodoPagamento,
    PedidoEntity,
    ProdutoRef,
    ResultadoGateway,
    TipoProduto,
)
from src.core.pedidos.exceptions import (
    CobrancaDesconhecidaError,
    GatewayError,
    GatewayIndisponivelError,
    PagamentoRecusadoError,
)
from src.core.shared.tempo import agora


def resposta(status_code=200, corpo=None):
    """Resposta HTTP falsa."""
    resp = Mock()
    resp.status_code = status_code
    resp.content = json.dumps(corpo).encode() if corpo is not None else b''
    resp.text = resp.content.decode()
    if corpo is None:
        resp.json.side_effect = ValueError("sem corpo")
    else:
        resp.json.return_value = corpo
    return resp


def criar_pedido(metodo=MetodoPagamento.PIX, parcelas=1):
    itens = [
        ItemPedido(ProdutoRef(TipoProduto.CURSO, 'metodologia-cientifica'), 'Curso de Metodologia', 19900),
        ItemPedido(ProdutoRef(TipoProduto.EBOOK, 'escrita-academica'), 'E-book Escrita', 4990),
    ]
    cliente = DadosCliente.criar(
        nome='Maria da Silva',
        email='maria@exemplo.com.br',
        cpf_cnpj='123.456.789-09',
        telefone='(11) 98888-7777',
        cep='01310-100',
        numero='1000',
    )
    return PedidoEntity.criar(itens, metodo, cliente, usuario_id='user-1', parcelas=parcelas)


@pytest.fixture
def cartao():
    return DadosCartaoDTO(
        titular='MARIA DA SILVA',
        numero='5162306000000008',
        mes_validade='12',
        ano_validade='2030',
        cvv='318',
    )


# =============================================================================
# Classificação
# =============================================================================

class TestClassificacao:
    @pytest.mark.parametrize('status,esperado', [
        ('RECEIVED', ResultadoGateway.PAGO),
        ('CONFIRMED', ResultadoGateway.PAGO),
        ('pending', ResultadoGateway.PENDENTE),
        ('AWAITING_RISK_ANALYSIS', ResultadoGateway.EM_PROCESSAMENTO),
        ('OVERDUE', ResultadoGateway.EXPIRADO),
        ('REFUNDED', ResultadoGateway.ESTORNADO),
        ('DELETED', ResultadoGateway.CANCELADO),
        ('DECLINED', ResultadoGateway.RECUSADO),
    ])
    def test_status(self, status, esperado):
        assert classificar_status(status) == esperado

    def test_status_desconhecido_vira_pendente(self):
        """Status novo do Asaas não muda o pedido."""
        assert classificar_status('ALGO_NOVO') == ResultadoGateway.PENDENTE
        assert classificar_status(None) == ResultadoGateway.PENDENTE

    def test_evento_tem_precedencia(self):
        assert classificar_evento('PAYMENT_REFUNDED', 'RECEIVED') == ResultadoGateway.ESTORNADO
        assert classificar_evento('PAYMENT_REPROVED_BY_RISK_ANALYSIS', 'PENDING') == ResultadoGateway.RECUSADO

    def test_evento_informativo_segue_status(self):
        assert classificar_evento('PAYMENT_CREATED', 'PENDING') == ResultadoGateway.PENDENTE
        assert classificar_evento('PAYMENT_UPDATED', 'CONFIRMED') == ResultadoGateway.PAGO

    @pytest.mark.parametrize('centavos,reais', [(19900, 199.0), (1, 0.01), (2990, 29.9)])
    def test_centavos_para_reais(self, centavos, reais):
        assert centavos_para_reais(centavos) == reais


# =============================================================================
# Cliente HTTP
# =============================================================================

class TestAsaasClient:
    """Testes para AsaasClient."""

    @pytest.fixture
    def session(self):
        session = Mock()
        session.headers = {}
        return session

    @pytest.fixture
    def client(self, session):
        return AsaasClient(api_key='chave', ambiente='sandbox', timeout=5, session=session)

    def test_configura_sessao(self, client, session):
        assert session.headers['access_token'] == 'chave'
        assert client.base_url == AsaasClient.URL_SANDBOX

    def test_producao(self, session):
        client = AsaasClient(api_key='chave', ambiente='producao', session=session)
        assert client.base_url == AsaasClient.URL_PRODUCAO

    def test_requisicao_com_timeout(self, client, session):
        session.request.return_value = resposta(200, {'id': 'pay_1', 'status': 'PENDING'})

        assert client.consultar_cobranca('pay_1')['id'] == 'pay_1'
        session.request.assert_called_once_with(
            'GET', f'{AsaasClient.URL_SANDBOX}/payments/pay_1', timeout=5
        )

    @pytest.mark.parametrize('erro', [requests.ConnectionError('recusada'), requests.Timeout('lento')])
    def test_falha_de_rede_e_indisponibilidade(self, client, session, erro):
        session.request.side_effect = erro

        with pytest.raises(GatewayIndisponivelError):
            client.consultar_cobranca('pay_1')

    @pytest.mark.parametrize('status_http', [500, 503, 429])
    def test_5xx_e_429_sao_indisponibilidade(self, client, session, status_http):
        session.request.return_value = resposta(status_http, {})

        with pytest.raises(GatewayIndisponivelError) as exc:
            client.consultar_cobranca('pay_1')

        assert exc.value.status_http == status_http

    def test_4xx_e_rejeicao(self, client, session):
        session.request.return_value = resposta(
            400, {'errors': [{'code': 'invalid_value', 'description': 'Valor inválido'}]}
        )

        with pytest.raises(GatewayError) as exc:
            client.criar_cobranca({'value': 0})

        assert not isinstance(exc.value, GatewayIndisponivelError)
        assert exc.value.code == 'GATEWAY_REQUEST_REJECTED'
        assert exc.value.status_http == 400
        assert exc.value.message == 'Valor inválido'

    def test_corpo_vazio(self, client, session):
        session.request.return_value = resposta(200)
        assert client.remover_cobranca('pay_1') is None

    def test_cliente_existente_e_atualizado(self, client, session):
        session.request.side_effect = [
            resposta(200, {'data': [{'id': 'cus_1'}]}),
            resposta(200, {'id': 'cus_1'}),
        ]

        assert client.criar_ou_atualizar_cliente({'cpfCnpj': '12345678909', 'name': 'Maria'}) == 'cus_1'

        metodo, url = session.request.call_args.args
        assert metodo == 'POST'
        assert url.endswith('/customers/cus_1')

    def test_cliente_novo(self, client, session):
        session.request.side_effect = [
            resposta(200, {'data': []}),
            resposta(200, {'id': 'cus_novo'}),
        ]

        assert client.criar_ou_atualizar_cliente({'cpfCnpj': '12345678909'}) == 'cus_novo'


# =============================================================================
# Gateway
# =============================================================================

class TestAsaasGateway:
    """Testes para AsaasGateway."""

    @pytest.fixture
    def client(self):
        client = Mock(spec=AsaasClient)
        client.criar_ou_atualizar_cliente.return_value = 'cus_1'
        client.criar_cobranca.return_value = {'id': 'pay_1', 'status': 'PENDING'}
        return client

    @pytest.fixture
    def gateway(self, client):
        return AsaasGateway(client, dias_vencimento_boleto=5)

    def test_cobranca_referencia_o_pedido(self, gateway, client):
        pedido = criar_pedido(MetodoPagamento.PIX)
        client.obter_qr_code_pix.return_value = {}

        gateway.criar_cobranca(pedido)

        dados = client.criar_cobranca.call_args.args[0]
        assert dados['externalReference'] == pedido.id
        assert dados['billingType'] == 'PIX'
        assert dados['value'] == 248.9
        assert dados['customer'] == 'cus_1'

        cliente = client.criar_ou_atualizar_cliente.call_args.args[0]
        assert cliente['cpfCnpj'] == '12345678909'

    def test_pix_com_qr_code(self, gateway, client):
        client.obter_qr_code_pix.return_value = {
            'payload': '00020126...',
            'encodedImage': 'iVBOR...',
            'expirationDate': '2030-01-01 23:59:59',
        }

        cobranca = gateway.criar_cobranca(criar_pedido(MetodoPagamento.PIX))

        assert cobranca.cobranca_id == 'pay_1'
        assert cobranca.resultado == ResultadoGateway.PENDENTE
        assert cobranca.pix_copia_e_cola == '00020126...'
        assert cobranca.pix_expira_em.tzinfo == FUSO_ASAAS

    def test_pix_sem_qr_code_ainda_cria_cobranca(self, gateway, client):
        client.obter_qr_code_pix.side_effect = GatewayIndisponivelError('lento')

        cobranca = gateway.criar_cobranca(criar_pedido(MetodoPagamento.PIX))

        assert cobranca.cobranca_id == 'pay_1'
        assert cobranca.pix_copia_e_cola is None

    def test_boleto(self, gateway, client):
        client.criar_cobranca.return_value = {
            'id': 'pay_1', 'status': 'PENDING', 'bankSlipUrl': 'https://asaas/b/pay_1',
        }
        client.obter_linha_digitavel.return_value = {'identificationField': '2379338128'}

        cobranca = gateway.criar_cobranca(criar_pedido(MetodoPagamento.BOLETO))

        assert cobranca.boleto_url == 'https://asaas/b/pay_1'
        assert cobranca.boleto_codigo_barras == '2379338128'
        assert cobranca.vencimento == agora().astimezone(FUSO_ASAAS).date() + timedelta(days=5)

    def test_cartao_aprovado(self, gateway, client, cartao):
        client.pagar_com_cartao.return_value = {'id': 'pay_1', 'status': 'CONFIRMED'}

        cobranca = gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO), cartao, '200.1.1.1')

        assert cobranca.resultado == ResultadoGateway.PAGO
        dados = client.pagar_com_cartao.call_args.args[1]
        assert dados['creditCard']['number'] == '5162306000000008'
        assert dados['remoteIp'] == '200.1.1.1'

    def test_cartao_parcelado_cobra_o_total(self, gateway, client, cartao):
        """24890 em 3x não divide exato: o total vai inteiro para o Asaas."""
        client.pagar_com_cartao.return_value = {'status': 'CONFIRMED'}

        gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO, parcelas=3), cartao)

        dados = client.criar_cobranca.call_args.args[0]
        assert dados['installmentCount'] == 3
        assert dados['totalValue'] == 248.9
        assert 'installmentValue' not in dados

    def test_cartao_4xx_e_recusa(self, gateway, client, cartao):
        client.pagar_com_cartao.side_effect = GatewayError(
            'Transação não autorizada', 'GATEWAY_REQUEST_REJECTED', 400
        )

        with pytest.raises(PagamentoRecusadoError) as exc:
            gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO), cartao)

        assert exc.value.cobranca_id == 'pay_1'
        assert exc.value.motivo == 'Transação não autorizada'

    def test_cartao_status_recusado(self, gateway, client, cartao):
        client.pagar_com_cartao.return_value = {'status': 'DECLINED'}

        with pytest.raises(PagamentoRecusadoError):
            gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO), cartao)

    def test_cartao_sem_resposta_remove_cobranca_orfa(self, gateway, client, cartao):
        client.pagar_com_cartao.side_effect = GatewayIndisponivelError('timeout')

        with pytest.raises(GatewayIndisponivelError):
            gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO), cartao)

        client.remover_cobranca.assert_called_once_with('pay_1')

    def test_cartao_nunca_aparece_no_log(self, gateway, client, cartao, caplog):
        client.pagar_com_cartao.return_value = {'status': 'CONFIRMED'}

        with caplog.at_level(logging.DEBUG):
            gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO), cartao)

        assert '5162306000000008' not in caplog.text
        assert '0008' in caplog.text

    def test_cartao_sem_dados(self, gateway, client):
        with pytest.raises(GatewayError):
            gateway.criar_cobranca(criar_pedido(MetodoPagamento.CARTAO_CREDITO))
        client.pagar_com_cartao.assert_not_called()

    def test_consultar_cobranca(self, gateway, client):
        client.consultar_cobranca.return_value = {
            'id': 'pay_1', 'status': 'RECEIVED', 'billingType': 'BOLETO', 'externalReference': 'ped-1',
        }

        notificacao = gateway.consultar_cobranca('pay_1')

        assert notificacao.resultado == ResultadoGateway.PAGO
        assert notificacao.trilho == 'boleto'
        assert notificacao.referencia_externa == 'ped-1'
        assert notificacao.parcelamento_id is None

    def test_consultar_cobranca_inexistente(self, gateway, client):
        client.consultar_cobranca.side_effect = GatewayError('não encontrado', 'GATEWAY_REQUEST_REJECTED', 404)

        with pytest.raises(CobrancaDesconhecidaError):
            gateway.consultar_cobranca('pay_x')

    def test_consultar_com_gateway_fora(self, gateway, client):
        client.consultar_cobranca.side_effect = GatewayIndisponivelError('fora', status_http=503)

        with pytest.raises(GatewayIndisponivelError):
            gateway.consultar_cobranca('pay_1')
