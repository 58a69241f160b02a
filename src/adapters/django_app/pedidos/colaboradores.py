"""
Adapters Django dos colaboradores externos ao núcleo de pedidos.

- DjangoCatalogo: preço canônico (tabela catalogo_produtos)
- DjangoMatricula: matrícula em cursos
- DjangoBiblioteca: liberação de download de papers e e-books
- DjangoIdentidade: contas via django.contrib.auth + sessões do Django

São implementações mínimas: o catálogo, a área do aluno e a biblioteca
vivem em outros módulos do marketplace e apenas expõem estes contratos.
"""

from typing import Optional
import logging

from django.conf import settings
from django.contrib.auth import BACKEND_SESSION_KEY, HASH_SESSION_KEY, SESSION_KEY
from django.contrib.auth import get_user_model
from django.contrib.sessions.backends.db import SessionStore
from django.db import IntegrityError, transaction

from src.core.pedidos.entities import ProdutoRef
from src.core.pedidos.exceptions import IdentidadeError

from .models import LiberacaoDownloadModel, MatriculaModel, ProdutoCatalogoModel

logger = logging.getLogger(__name__)

URL_DOWNLOAD_PADRAO = "https://download.lneducacional.com.br"
TAMANHO_MINIMO_SENHA = 6


class DjangoCatalogo:
    """CatalogoProdutos lido da tabela de preços."""

    def _produto(self, produto: ProdutoRef) -> ProdutoCatalogoModel:
        return ProdutoCatalogoModel.objects.get(
            tipo=produto.tipo.value,
            produto_id=produto.produto_id,
            ativo=True,
        )

    def produto_existe(self, produto: ProdutoRef) -> bool:
        return ProdutoCatalogoModel.objects.filter(
            tipo=produto.tipo.value,
            produto_id=produto.produto_id,
            ativo=True,
        ).exists()

    def preco_atual(self, produto: ProdutoRef) -> int:
        return self._produto(produto).preco_centavos

    def titulo(self, produto: ProdutoRef) -> str:
        return self._produto(produto).titulo


class DjangoMatricula:
    """ServicoMatricula idempotente (get_or_create)."""

    def garantir_matricula(self, usuario_id: str, curso_id: str) -> None:
        _, criada = MatriculaModel.objects.get_or_create(
            usuario_id=usuario_id,
            curso_id=curso_id,
        )
        if criada:
            logger.info(f"Usuário {usuario_id} matriculado no curso {curso_id}")


class DjangoBiblioteca:
    """ServicoBiblioteca: registra o link de download do produto."""

    def __init__(self, url_base: Optional[str] = None):
        self.url_base = (
            url_base or getattr(settings, 'BIBLIOTECA_URL_DOWNLOAD', URL_DOWNLOAD_PADRAO)
        ).rstrip('/')

    def garantir_liberacao(self, usuario_id: str, produto: ProdutoRef) -> None:
        _, criada = LiberacaoDownloadModel.objects.get_or_create(
            usuario_id=usuario_id,
            produto_tipo=produto.tipo.value,
            produto_id=produto.produto_id,
            defaults={'url_download': f"{self.url_base}/{produto.tipo.value}/{produto.produto_id}"},
        )
        if criada:
            logger.info(f"Download de {produto} liberado para {usuario_id}")


class DjangoIdentidade:
    """
    ServicoIdentidade sobre django.contrib.auth.

    O email é usado como username. A sessão emitida é uma sessão do
    Django já autenticada; o token devolvido é a session key.
    """

    def criar_usuario(self, email: str, senha: str, nome: Optional[str] = None) -> str:
        if not senha or len(senha) < TAMANHO_MINIMO_SENHA:
            raise IdentidadeError(
                f"Senha deve ter ao menos {TAMANHO_MINIMO_SENHA} caracteres"
            )

        User = get_user_model()
        if User.objects.filter(username=email).exists():
            raise IdentidadeError(f"Já existe conta para {email}")

        try:
            with transaction.atomic():
                usuario = User.objects.create_user(
                    username=email,
                    email=email,
                    password=senha,
                    first_name=(nome or '')[:150],
                )
        except IntegrityError:
            raise IdentidadeError(f"Já existe conta para {email}")

        logger.info(f"Conta criada no checkout: {usuario.pk}")
        return str(usuario.pk)

    def emitir_sessao(self, usuario_id: str) -> str:
        usuario = get_user_model().objects.get(pk=usuario_id)

        sessao = SessionStore()
        sessao[SESSION_KEY] = str(usuario.pk)
        sessao[BACKEND_SESSION_KEY] = settings.AUTHENTICATION_BACKENDS[0]
        sessao[HASH_SESSION_KEY] = usuario.get_session_auth_hash()
        sessao.create()
        return sessao.session_key
