"""
Data Transfer Objects (DTOs) do Domínio de Pedidos.

Tipos de DTOs:
- Input DTOs: Dados de checkout recebidos da API
- Gateway DTOs: Forma única das respostas/notificações dos trilhos
- Output DTOs: Respostas para a API (discriminadas pelo método)
- Relatórios: Resultado das varreduras em background
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

from src.core.shared.exceptions import ValidationError

from .entities import (
    EventoStatus,
    MetodoPagamento,
    PedidoEntity,
    ResultadoGateway,
)


# =============================================================================
# INPUT DTOs (Entrada)
# =============================================================================

@dataclass(frozen=True)
class ItemCheckoutDTO:
    """Item pedido pelo cliente: só a referência, nunca o preço."""

    tipo: str
    produto_id: str

    def to_dict(self) -> dict:
        return {"tipo": self.tipo, "produto_id": self.produto_id}


@dataclass(frozen=True)
class ClienteDTO:
    """Dados de cobrança informados no checkout."""

    nome: str
    email: str
    cpf_cnpj: str
    telefone: Optional[str] = None
    cep: Optional[str] = None
    endereco: Optional[str] = None
    numero: Optional[str] = None
    bairro: Optional[str] = None

    def to_dict(self) -> dict:
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


@dataclass(frozen=True)
class DadosCartaoDTO:
    """
    Dados do cartão de crédito.

    Trafegam apenas até o gateway: não são persistidos nem logados
    (numero e cvv ficam fora do repr).
    """

    titular: str
    numero: str = field(repr=False)
    mes_validade: str
    ano_validade: str
    cvv: str = field(repr=False)

    @property
    def final(self) -> str:
        return self.numero[-4:] if self.numero else ""

    @classmethod
    def from_dict(cls, data: Any) -> Optional["DadosCartaoDTO"]:
        """
        Raises:
            ValidationError: Se cartao não for um objeto
        """
        if not data:
            return None
        if not isinstance(data, Mapping):
            raise ValidationError("Dados do cartão devem ser um objeto", field="cartao")
        return cls(
            titular=str(data.get("titular") or ""),
            numero=str(data.get("numero", "")).replace(" ", ""),
            mes_validade=str(data.get("mes_validade", "")),
            ano_validade=str(data.get("ano_validade", "")),
            cvv=str(data.get("cvv", "")),
        )


@dataclass(frozen=True)
class CriarCheckoutInputDTO:
    """
    DTO de entrada para criar checkout.

    Attributes:
        itens: Referências dos produtos (tuple para ser hashable)
        metodo_pagamento: CREDIT_CARD, PIX ou BOLETO
        cliente: Dados de cobrança
        cartao: Dados do cartão (apenas CREDIT_CARD)
        parcelas: Parcelas do cartão (1 a 12)
        usuario_id: Usuário autenticado (None para visitante)
        senha: Senha da conta criada no checkout de visitante
        ip_remoto: IP do comprador (exigido pelo gateway no cartão)
    """

    itens: tuple
    metodo_pagamento: str
    cliente: ClienteDTO
    cartao: Optional[DadosCartaoDTO] = None
    parcelas: int = 1
    usuario_id: Optional[str] = None
    senha: Optional[str] = field(default=None, repr=False)
    ip_remoto: Optional[str] = None

    @property
    def visitante(self) -> bool:
        return not self.usuario_id

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        usuario_id: Optional[str] = None,
        ip_remoto: Optional[str] = None,
    ) -> "CriarCheckoutInputDTO":
        """
        Monta o DTO a partir do JSON da API.

        Preços eventualmente enviados pelo cliente são ignorados.

        Raises:
            ValidationError: Se itens, cliente ou cartao têm o tipo errado
        """
        itens_data = data.get("itens") or []
        if not isinstance(itens_data, list):
            raise ValidationError("itens deve ser uma lista", field="itens")
        if not all(isinstance(item, Mapping) for item in itens_data):
            raise ValidationError("Cada item deve ser um objeto", field="itens")

        itens = tuple(
            ItemCheckoutDTO(
                tipo=str(item.get("tipo") or item.get("type") or ""),
                produto_id=str(item.get("produto_id") or item.get("id") or ""),
            )
            for item in itens_data
        )

        cliente_data = data.get("cliente") or {}
        if not isinstance(cliente_data, Mapping):
            raise ValidationError("Dados do cliente devem ser um objeto", field="cliente")
        cliente = ClienteDTO(
            nome=str(cliente_data.get("nome") or ""),
            email=str(cliente_data.get("email") or ""),
            cpf_cnpj=str(cliente_data.get("cpf_cnpj") or ""),
            telefone=cliente_data.get("telefone"),
            cep=cliente_data.get("cep"),
            endereco=cliente_data.get("endereco"),
            numero=cliente_data.get("numero"),
            bairro=cliente_data.get("bairro"),
        )

        cartao = DadosCartaoDTO.from_dict(data.get("cartao"))

        try:
            parcelas = int(data.get("parcelas") or 1)
        except (TypeError, ValueError):
            parcelas = 0  # rejeitado na validação da entidade

        return cls(
            itens=itens,
            metodo_pagamento=str(data.get("metodo_pagamento", "")),
            cliente=cliente,
            cartao=cartao,
            parcelas=parcelas,
            usuario_id=usuario_id,
            senha=data.get("senha"),
            ip_remoto=ip_remoto,
        )

    def to_dict(self) -> dict:
        """Converte para dicionário (sem cartão e sem senha)."""
        return {
            "itens": [item.to_dict() for item in self.itens],
            "metodo_pagamento": self.metodo_pagamento,
            "cliente": self.cliente.to_dict(),
            "parcelas": self.parcelas,
            "usuario_id": self.usuario_id,
        }


# =============================================================================
# GATEWAY DTOs (forma interna única dos trilhos)
# =============================================================================

@dataclass(frozen=True)
class NotificacaoGateway:
    """
    Notificação normalizada de um trilho (webhook ou consulta).

    Attributes:
        trilho: cartao, pix ou boleto
        cobranca_id: Referência da cobrança no gateway
        resultado: Resultado interno classificado
        status_bruto: Status/evento original do gateway
        referencia_externa: ID do pedido enviado na criação da cobrança
        parcelamento_id: Parcelamento ao qual a cobrança pertence (cartão
            parcelado: uma cobrança por parcela, mesma referência externa)
        payload: Payload bruto (guardado no EventoStatus)
    """

    trilho: str
    cobranca_id: str
    resultado: ResultadoGateway
    status_bruto: str = ""
    referencia_externa: Optional[str] = None
    parcelamento_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CobrancaCriada:
    """Resposta normalizada da criação de cobrança."""

    cobranca_id: str
    resultado: ResultadoGateway
    status_bruto: str = ""
    pix_copia_e_cola: Optional[str] = None
    pix_qr_code: Optional[str] = None
    pix_expira_em: Optional[datetime] = None
    boleto_url: Optional[str] = None
    boleto_codigo_barras: Optional[str] = None
    vencimento: Optional[date] = None
    payload: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# OUTPUT DTOs (Saída)
# =============================================================================

@dataclass
class CheckoutOutputDTO:
    """
    DTO de saída do checkout, discriminado pelo método de pagamento.

    Apenas o bloco do método usado (cartao, pix ou boleto) é preenchido.
    aguardando_confirmacao=True significa "aguarde", não falha.
    """

    pedido_id: str
    status: str
    status_pagamento: str
    metodo_pagamento: str
    valor_total: int
    aguardando_confirmacao: bool
    cartao: Optional[Dict[str, Any]] = None
    pix: Optional[Dict[str, Any]] = None
    boleto: Optional[Dict[str, Any]] = None
    usuario_id: Optional[str] = None
    sessao: Optional[str] = None
    erro_identidade: Optional[str] = None
    recusado: bool = False
    motivo_recusa: Optional[str] = None
    erro_gateway: Optional[str] = None

    @classmethod
    def from_entity(
        cls,
        pedido: PedidoEntity,
        vencimento: Optional[date] = None,
        status_cobranca: Optional[str] = None,
        **extras,
    ) -> "CheckoutOutputDTO":
        cartao = pix = boleto = None

        if pedido.metodo_pagamento == MetodoPagamento.CARTAO_CREDITO:
            cartao = {
                "status_cobranca": status_cobranca,
                "parcelas": pedido.parcelas,
            }
        elif pedido.metodo_pagamento == MetodoPagamento.PIX and pedido.tem_cobranca:
            pix = {
                "copia_e_cola": pedido.pix_copia_e_cola,
                "qr_code": pedido.pix_qr_code,
                "expira_em": pedido.pix_expira_em.isoformat() if pedido.pix_expira_em else None,
            }
        elif pedido.metodo_pagamento == MetodoPagamento.BOLETO and pedido.tem_cobranca:
            boleto = {
                "url": pedido.boleto_url,
                "codigo_barras": pedido.boleto_codigo_barras,
                "vencimento": vencimento.isoformat() if vencimento else None,
            }

        return cls(
            pedido_id=pedido.id,
            status=pedido.status.value,
            status_pagamento=pedido.status_pagamento.value,
            metodo_pagamento=pedido.metodo_pagamento.value,
            valor_total=pedido.valor_total,
            aguardando_confirmacao=pedido.aguardando_confirmacao,
            cartao=cartao,
            pix=pix,
            boleto=boleto,
            usuario_id=pedido.usuario_id,
            motivo_recusa=pedido.motivo_recusa,
            **extras,
        )

    def to_dict(self) -> dict:
        data = {
            "pedido_id": self.pedido_id,
            "status": self.status,
            "status_pagamento": self.status_pagamento,
            "metodo_pagamento": self.metodo_pagamento,
            "valor_total": self.valor_total,
            "aguardando_confirmacao": self.aguardando_confirmacao,
            "recusado": self.recusado,
        }

        # Só o bloco do método usado
        for chave in ("cartao", "pix", "boleto"):
            valor = getattr(self, chave)
            if valor is not None:
                data[chave] = valor

        for chave in ("usuario_id", "sessao", "erro_identidade", "motivo_recusa", "erro_gateway"):
            valor = getattr(self, chave)
            if valor:
                data[chave] = valor

        return data


@dataclass
class StatusPedidoOutputDTO:
    """DTO de saída para o polling de status pelo cliente."""

    pedido_id: str
    status: str
    status_pagamento: str
    metodo_pagamento: str
    valor_total: int
    criado_em: datetime
    itens: List[Dict[str, Any]]
    pix_copia_e_cola: Optional[str] = None
    boleto_url: Optional[str] = None

    @property
    def concluido(self) -> bool:
        return self.status == "COMPLETED"

    @classmethod
    def from_entity(cls, pedido: PedidoEntity) -> "StatusPedidoOutputDTO":
        return cls(
            pedido_id=pedido.id,
            status=pedido.status.value,
            status_pagamento=pedido.status_pagamento.value,
            metodo_pagamento=pedido.metodo_pagamento.value,
            valor_total=pedido.valor_total,
            criado_em=pedido.criado_em,
            itens=[
                {
                    "tipo": item.produto.tipo.value,
                    "produto_id": item.produto.produto_id,
                    "titulo": item.titulo,
                    "preco_centavos": item.preco_centavos,
                }
                for item in pedido.itens
            ],
            pix_copia_e_cola=pedido.pix_copia_e_cola,
            boleto_url=pedido.boleto_url,
        )

    def to_dict(self) -> dict:
        return {
            "pedido_id": self.pedido_id,
            "status": self.status,
            "status_pagamento": self.status_pagamento,
            "metodo_pagamento": self.metodo_pagamento,
            "valor_total": self.valor_total,
            "criado_em": self.criado_em.isoformat(),
            "itens": self.itens,
            "pix_copia_e_cola": self.pix_copia_e_cola,
            "boleto_url": self.boleto_url,
            "concluido": self.concluido,
        }


@dataclass
class PedidoListItemDTO:
    """DTO otimizado para listagens de pedidos."""

    id: str
    status: str
    status_pagamento: str
    metodo_pagamento: str
    valor_total: int
    quantidade_itens: int
    usuario_id: Optional[str]
    criado_em: datetime

    @classmethod
    def from_entity(cls, pedido: PedidoEntity) -> "PedidoListItemDTO":
        return cls(
            id=pedido.id,
            status=pedido.status.value,
            status_pagamento=pedido.status_pagamento.value,
            metodo_pagamento=pedido.metodo_pagamento.value,
            valor_total=pedido.valor_total,
            quantidade_itens=len(pedido.itens),
            usuario_id=pedido.usuario_id,
            criado_em=pedido.criado_em,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "status_pagamento": self.status_pagamento,
            "metodo_pagamento": self.metodo_pagamento,
            "valor_total": self.valor_total,
            "quantidade_itens": self.quantidade_itens,
            "usuario_id": self.usuario_id,
            "criado_em": self.criado_em.isoformat(),
        }


@dataclass
class ResultadoTransicao:
    """
    Resultado da entrada única da máquina de estados.

    Attributes:
        pedido: Pedido após a tentativa
        evento: EventoStatus registrado (aceito ou rejeitado)
        efetivo: True se o status mudou
    """

    pedido: PedidoEntity
    evento: Optional[EventoStatus]
    efetivo: bool

    @property
    def concluiu(self) -> bool:
        return self.efetivo and self.pedido.status.value == "COMPLETED"


# =============================================================================
# Relatórios das varreduras
# =============================================================================

@dataclass
class RelatorioConciliacaoDTO:
    """Contadores de uma execução da conciliação."""

    verificados: int = 0
    transicoes: int = 0
    cobrancas_reemitidas: int = 0
    cancelados_sem_cobranca: int = 0
    falhas: int = 0

    def to_dict(self) -> dict:
        return {
            "verificados": self.verificados,
            "transicoes": self.transicoes,
            "cobrancas_reemitidas": self.cobrancas_reemitidas,
            "cancelados_sem_cobranca": self.cancelados_sem_cobranca,
            "falhas": self.falhas,
        }


@dataclass
class RelatorioConcessoesDTO:
    """Contadores do reprocessamento de concessões pendentes."""

    processados: int = 0
    concluidos: int = 0
    falhas: int = 0

    def to_dict(self) -> dict:
        return {
            "processados": self.processados,
            "concluidos": self.concluidos,
            "falhas": self.falhas,
        }
