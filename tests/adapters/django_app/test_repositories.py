"""
Testes dos adapters Django de Pedidos.

Testa:
- DjangoPedidoRepository / DjangoConcessaoRepository (SQLite em memória)
- Mappers (Entity ⇄ Model)
- DjangoUnitOfWork (commit, rollback, eventos)
- Colaboradores (catálogo, matrícula, biblioteca, identidade)
- Use cases montados sobre os adapters Django
"""

import threading
from datetime import timedelta

import pytest
from dependency_injector import providers
from django.db import IntegrityError, transaction
from django.utils import timezone

from src.adapters.django_app.events.publishers import InMemoryEventPublisher
from src.adapters.django_app.pedidos.colaboradores import (
    DjangoBiblioteca,
    DjangoCatalogo,
    DjangoIdentidade,
    DjangoMatricula,
)
from src.adapters.django_app.pedidos.models import (
    ConcessaoAcessoModel,
    EventoStatusModel,
    ItemPedidoModel,
    LiberacaoDownloadModel,
    MatriculaModel,
    PedidoModel,
)
from src.adapters.django_app.pedidos.repositories import (
    DjangoConcessaoRepository,
    DjangoPedidoRepository,
)
from src.adapters.django_app.shared.unit_of_work import DjangoUnitOfWork
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
    StatusPedido,
    TipoProduto,
)
from src.core.pedidos.events import PedidoCriadoEvent
from src.core.pedidos.exceptions import IdentidadeError

pytestmark = pytest.mark.django_db


CURSO = ProdutoRef(TipoProduto.CURSO, 'metodologia-cientifica')
EBOOK = ProdutoRef(TipoProduto.EBOOK, 'escrita-academica')


def criar_pedido(metodo=MetodoPagamento.PIX, usuario_id='user-1'):
    cliente = DadosCliente.criar(
        nome='Maria da Silva', email='maria@exemplo.com.br', cpf_cnpj='123.456.789-09'
    )
    itens = [
        ItemPedido(CURSO, 'Curso de Metodologia Científica', 19900),
        ItemPedido(EBOOK, 'E-book Escrita Acadêmica', 4990),
    ]
    return PedidoEntity.criar(itens, metodo, cliente, usuario_id=usuario_id)


@pytest.fixture
def repo():
    return DjangoPedidoRepository()


@pytest.fixture
def concessoes():
    return DjangoConcessaoRepository()


# =============================================================================
# Repositório de pedidos
# =============================================================================

class TestDjangoPedidoRepository:
    """Testes para DjangoPedidoRepository."""

    def test_save_e_get_by_id(self, repo):
        pedido = criar_pedido()

        repo.save(pedido)
        carregado = repo.get_by_id(pedido.id)

        assert carregado.id == pedido.id
        assert carregado.valor_total == 24890
        assert [item.produto for item in carregado.itens] == [CURSO, EBOOK]
        assert carregado.cliente.cpf_cnpj == '12345678909'
        assert carregado.status == StatusPedido.PENDENTE

    def test_atualizacao_nao_duplica_itens(self, repo):
        pedido = criar_pedido()
        repo.save(pedido)

        pedido.registrar_cobranca('pay_1', pix_copia_e_cola='000201')
        repo.save(pedido)

        assert ItemPedidoModel.objects.filter(pedido_id=pedido.id).count() == 2
        assert repo.get_by_id(pedido.id).pix_copia_e_cola == '000201'

    def test_get_inexistente(self, repo):
        assert repo.get_by_id('nao-existe') is None

    def test_get_by_cobranca_id(self, repo):
        pedido = criar_pedido()
        pedido.registrar_cobranca('pay_1')
        repo.save(pedido)

        assert repo.get_by_cobranca_id('pay_1').id == pedido.id
        assert repo.get_by_cobranca_id('pay_2') is None
        assert repo.get_by_cobranca_id('') is None

    def test_cobranca_unica_no_banco(self, repo):
        primeiro, segundo = criar_pedido(), criar_pedido()
        primeiro.registrar_cobranca('pay_1')
        segundo.registrar_cobranca('pay_1')
        repo.save(primeiro)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                repo.save(segundo)

    def test_travar(self, repo):
        pedido = criar_pedido()
        repo.save(pedido)

        with repo.travar(pedido.id) as travado:
            assert travado.id == pedido.id

        with repo.travar('nao-existe') as travado:
            assert travado is None

    def test_historico_de_status(self, repo):
        pedido = criar_pedido()
        repo.save(pedido)

        primeiro = EventoStatus.registrar(
            pedido, StatusPedido.CONCLUIDO, OrigemEvento.WEBHOOK,
            resultado=ResultadoGateway.PAGO, payload={'event': 'PAYMENT_RECEIVED'},
        )
        repo.adicionar_evento_status(primeiro)
        segundo = EventoStatus.registrar(
            pedido, StatusPedido.CONCLUIDO, OrigemEvento.CONCILIACAO, anterior=primeiro,
        )
        repo.adicionar_evento_status(segundo)

        eventos = repo.listar_eventos_status(pedido.id)
        assert [e.sequencia for e in eventos] == [1, 2]
        assert eventos[0].payload_bruto == {'event': 'PAYMENT_RECEIVED'}
        assert eventos[0].resultado_gateway == ResultadoGateway.PAGO
        assert repo.ultimo_evento_status(pedido.id).sequencia == 2
        assert repo.ultimo_evento_status('nao-existe') is None

    def test_sequencia_unica_por_pedido(self, repo):
        pedido = criar_pedido()
        repo.save(pedido)
        evento = EventoStatus.registrar(pedido, StatusPedido.CONCLUIDO, OrigemEvento.WEBHOOK)
        repo.adicionar_evento_status(evento)

        repetido = EventoStatus.registrar(pedido, StatusPedido.CONCLUIDO, OrigemEvento.WEBHOOK)
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                repo.adicionar_evento_status(repetido)

    def test_aguardando_confirmacao_respeita_limiar_por_metodo(self, repo, pedido_model_factory):
        agora = timezone.now()
        pix_velho = pedido_model_factory(metodo_pagamento='PIX', criado_em=agora - timedelta(hours=2))
        pedido_model_factory(metodo_pagamento='PIX', criado_em=agora - timedelta(minutes=10))
        boleto_novo = pedido_model_factory(metodo_pagamento='BOLETO', criado_em=agora - timedelta(hours=2))
        pedido_model_factory(metodo_pagamento='PIX', status='COMPLETED', criado_em=agora - timedelta(days=3))

        cortes = {
            MetodoPagamento.CARTAO_CREDITO: agora - timedelta(minutes=15),
            MetodoPagamento.PIX: agora - timedelta(hours=1),
            MetodoPagamento.BOLETO: agora - timedelta(days=1),
        }
        ids = [p.id for p in repo.list_aguardando_confirmacao(cortes, 100)]

        assert ids == [pix_velho.id]
        assert boleto_novo.id not in ids

    def test_aguardando_confirmacao_nunca_verificados_primeiro(self, repo, pedido_model_factory):
        agora = timezone.now()
        verificado = pedido_model_factory(
            criado_em=agora - timedelta(hours=5), verificado_em=agora - timedelta(minutes=1)
        )
        nunca = pedido_model_factory(criado_em=agora - timedelta(hours=2))
        cortes = {metodo: agora for metodo in MetodoPagamento}

        ids = [p.id for p in repo.list_aguardando_confirmacao(cortes, 100)]

        assert ids == [nunca.id, verificado.id]
        assert len(repo.list_aguardando_confirmacao(cortes, 1)) == 1

    def test_concessao_pendente(self, repo, pedido_model_factory):
        pendente = pedido_model_factory(status='COMPLETED', concessao_pendente=True)
        pedido_model_factory(status='COMPLETED')
        pedido_model_factory(status='PENDING', concessao_pendente=True)

        assert [p.id for p in repo.list_concessao_pendente(10)] == [pendente.id]

    def test_concessao_pendente_ignora_visitante_sem_conta(self, repo, pedido_model_factory):
        pedido_model_factory(status='COMPLETED', concessao_pendente=True, usuario_id=None)

        assert repo.list_concessao_pendente(10) == []

    def test_listar_com_filtros(self, repo, pedido_model_factory):
        pedido_model_factory(usuario_id='user-1', status='COMPLETED')
        pedido_model_factory(usuario_id='user-1')
        pedido_model_factory(usuario_id='user-2')

        pedidos, total = repo.listar(usuario_id='user-1')
        concluidos, total_concluidos = repo.listar(status=StatusPedido.CONCLUIDO)
        pagina, total_geral = repo.listar(offset=2, limite=2)

        assert total == 2
        assert {p.usuario_id for p in pedidos} == {'user-1'}
        assert total_concluidos == 1
        assert total_geral == 3
        assert len(pagina) == 1


class TestDjangoConcessaoRepository:
    """Unicidade de concessão por (pedido, produto)."""

    def test_registrar_se_ausente(self, repo, concessoes):
        pedido = criar_pedido()
        repo.save(pedido)

        assert concessoes.registrar_se_ausente(ConcessaoAcesso.criar(pedido, pedido.itens[0]))
        assert not concessoes.registrar_se_ausente(ConcessaoAcesso.criar(pedido, pedido.itens[0]))

        assert concessoes.existe(pedido.id, CURSO)
        assert not concessoes.existe(pedido.id, EBOOK)
        assert ConcessaoAcessoModel.objects.count() == 1

    def test_list_by_pedido(self, repo, concessoes):
        pedido = criar_pedido()
        repo.save(pedido)
        for item in pedido.itens:
            concessoes.registrar_se_ausente(ConcessaoAcesso.criar(pedido, item))

        assert {c.produto for c in concessoes.list_by_pedido(pedido.id)} == {CURSO, EBOOK}


# =============================================================================
# Unit of Work
# =============================================================================

class TestDjangoUnitOfWork:
    """Testes para DjangoUnitOfWork."""

    def test_commit_publica_eventos(self, repo):
        publisher = InMemoryEventPublisher()
        uow = DjangoUnitOfWork(event_publisher=publisher)
        pedido = criar_pedido()

        with uow:
            repo.save(pedido)
            uow.publish_event(PedidoCriadoEvent(aggregate_id=pedido.id))
            assert publisher.published_events == []

        assert uow.is_committed
        assert repo.get_by_id(pedido.id) is not None
        assert publisher.get_events_by_type('PedidoCriadoEvent')

    def test_rollback_desfaz_e_descarta_eventos(self, repo):
        publisher = InMemoryEventPublisher()
        uow = DjangoUnitOfWork(event_publisher=publisher)
        pedido = criar_pedido()

        with pytest.raises(RuntimeError):
            with uow:
                repo.save(pedido)
                uow.publish_event(PedidoCriadoEvent(aggregate_id=pedido.id))
                raise RuntimeError("falha no meio")

        assert uow.is_rolled_back
        assert repo.get_by_id(pedido.id) is None
        assert publisher.published_events == []

    def test_nao_aninha_na_mesma_instancia(self):
        uow = DjangoUnitOfWork()
        with uow:
            with pytest.raises(RuntimeError):
                uow.__enter__()


# =============================================================================
# Colaboradores
# =============================================================================

class TestColaboradores:
    def test_catalogo(self, catalogo_db):
        catalogo = DjangoCatalogo()

        assert catalogo.produto_existe(CURSO)
        assert catalogo.preco_atual(CURSO) == 19900
        assert catalogo.titulo(EBOOK) == 'E-book Escrita Acadêmica'
        assert not catalogo.produto_existe(ProdutoRef(TipoProduto.EBOOK, 'fora-de-linha'))
        assert not catalogo.produto_existe(ProdutoRef(TipoProduto.PAPER, 'nao-existe'))

    def test_matricula_idempotente(self):
        matricula = DjangoMatricula()
        matricula.garantir_matricula('user-1', 'metodologia-cientifica')
        matricula.garantir_matricula('user-1', 'metodologia-cientifica')

        assert MatriculaModel.objects.count() == 1

    def test_biblioteca_idempotente(self):
        biblioteca = DjangoBiblioteca(url_base='https://cdn.teste/')
        biblioteca.garantir_liberacao('user-1', EBOOK)
        biblioteca.garantir_liberacao('user-1', EBOOK)

        liberacao = LiberacaoDownloadModel.objects.get()
        assert liberacao.url_download == 'https://cdn.teste/ebook/escrita-academica'

    def test_identidade_cria_usuario_e_sessao(self):
        from django.contrib.sessions.backends.db import SessionStore
        from django.contrib.auth import SESSION_KEY

        identidade = DjangoIdentidade()
        usuario_id = identidade.criar_usuario('novo@exemplo.com.br', 'segredo123', 'Novo Aluno')
        sessao = identidade.emitir_sessao(usuario_id)

        assert SessionStore(session_key=sessao)[SESSION_KEY] == usuario_id

    @pytest.mark.parametrize('senha', ['', '123'])
    def test_identidade_senha_curta(self, senha):
        with pytest.raises(IdentidadeError):
            DjangoIdentidade().criar_usuario('novo@exemplo.com.br', senha)

    def test_identidade_email_repetido(self, usuario):
        with pytest.raises(IdentidadeError):
            DjangoIdentidade().criar_usuario(usuario.email, 'segredo123')


# =============================================================================
# Use cases sobre os adapters Django
# =============================================================================

@pytest.fixture
def container_db(container):
    """Container de testes com persistência e colaboradores Django."""
    container.pedido_repository.override(providers.Singleton(DjangoPedidoRepository))
    container.concessao_repository.override(providers.Singleton(DjangoConcessaoRepository))
    container.catalogo.override(providers.Singleton(DjangoCatalogo))
    container.matricula.override(providers.Singleton(DjangoMatricula))
    container.biblioteca.override(providers.Singleton(DjangoBiblioteca))
    container.identidade.override(providers.Singleton(DjangoIdentidade))
    container.unit_of_work.override(
        providers.Factory(DjangoUnitOfWork, event_publisher=container.event_publisher)
    )
    return container


class TestUseCasesComDjango:
    def test_checkout_pix_e_webhook(self, container_db, catalogo_db, checkout_input, corpo_webhook, cabecalhos_webhook):
        output = container_db.criar_checkout_service().execute(
            checkout_input('PIX', [('course', 'metodologia-cientifica'), ('ebook', 'escrita-academica')])
        )
        cobranca_id = PedidoModel.objects.get(id=output.pedido_id).cobranca_id

        webhook = container_db.processar_webhook_service()
        webhook.execute('pix', cabecalhos_webhook, corpo_webhook(cobranca_id))
        repetido = webhook.execute('pix', cabecalhos_webhook, corpo_webhook(cobranca_id))

        model = PedidoModel.objects.get(id=output.pedido_id)
        assert model.status == 'COMPLETED'
        assert not model.concessao_pendente
        assert not repetido.efetivo
        assert list(
            EventoStatusModel.objects.filter(pedido_id=model.id).values_list('aceito', flat=True)
        ) == [True, False]
        assert ConcessaoAcessoModel.objects.filter(pedido_id=model.id).count() == 2
        assert MatriculaModel.objects.filter(curso_id='metodologia-cientifica').exists()
        assert LiberacaoDownloadModel.objects.filter(produto_id='escrita-academica').exists()

    def test_checkout_visitante_cria_conta(self, container_db, catalogo_db, checkout_input):
        from django.contrib.auth import get_user_model

        output = container_db.criar_checkout_service().execute(
            checkout_input('CREDIT_CARD', usuario_id=None, senha='segredo123')
        )

        usuario = get_user_model().objects.get(username='maria@exemplo.com.br')
        assert output.sessao
        assert output.status == 'COMPLETED'
        assert PedidoModel.objects.get(id=output.pedido_id).usuario_id == str(usuario.pk)
        assert MatriculaModel.objects.filter(usuario_id=str(usuario.pk)).exists()

    def test_produto_inativo_rejeitado(self, container_db, catalogo_db, checkout_input):
        from src.core.shared.exceptions import ValidationError

        with pytest.raises(ValidationError):
            container_db.criar_checkout_service().execute(
                checkout_input('PIX', [('ebook', 'fora-de-linha')])
            )
        assert PedidoModel.objects.count() == 0

    def test_conciliacao(self, container_db, catalogo_db, checkout_input, gateway):
        output = container_db.criar_checkout_service().execute(checkout_input('BOLETO'))
        model = PedidoModel.objects.get(id=output.pedido_id)
        gateway.definir_resultado(model.cobranca_id, ResultadoGateway.PAGO)

        relatorio = container_db.conciliar_pedidos_service().execute(timezone.now() + timedelta(days=2))

        assert relatorio.transicoes == 1
        model.refresh_from_db()
        assert model.status == 'COMPLETED'
        assert EventoStatusModel.objects.get(pedido_id=model.id).origem == 'poll'


@pytest.mark.integration
@pytest.mark.django_db(transaction=True)
class TestConcorrenciaPostgres:
    """
    Lock de linha real: exige PostgreSQL (--run-integration).

    No SQLite da suíte padrão esta classe é pulada; o caminho
    select_for_update do DjangoPedidoRepository.travar só é exercitado
    aqui. Sem PostgreSQL, entregas concorrentes ficam cobertas apenas
    pelo teste com threads sobre o repositório em memória
    (tests/integration/test_fluxo_checkout.py).
    """

    def test_webhooks_simultaneos_uma_transicao(self, container_db, catalogo_db, checkout_input,
                                                corpo_webhook, cabecalhos_webhook):
        from django.db import connection

        output = container_db.criar_checkout_service().execute(checkout_input('PIX'))
        cobranca_id = PedidoModel.objects.get(id=output.pedido_id).cobranca_id
        barreira = threading.Barrier(4)
        erros = []

        def entregar():
            try:
                barreira.wait()
                container_db.processar_webhook_service().execute(
                    'pix', cabecalhos_webhook, corpo_webhook(cobranca_id)
                )
            except Exception as exc:
                erros.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=entregar) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert erros == []
        aceitos = EventoStatusModel.objects.filter(pedido_id=output.pedido_id, aceito=True).count()
        assert aceitos == 1
        assert EventoStatusModel.objects.filter(pedido_id=output.pedido_id).count() == 4
        assert ConcessaoAcessoModel.objects.filter(pedido_id=output.pedido_id).count() == 1
