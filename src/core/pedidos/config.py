"""
Configuração do domínio de pedidos.

Os limiares da conciliação vêm das settings (variáveis de ambiente);
o núcleo só recebe os valores já montados pelo container.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping

from .entities import MetodoPagamento


@dataclass(frozen=True)
class ConfiguracaoConciliacao:
    """
    Limiares a partir dos quais um pedido parado é reconsultado no gateway.

    Attributes:
        limiar_cartao: Idade mínima de pedidos no cartão (minutos)
        limiar_pix: Idade mínima de pedidos PIX (horas)
        limiar_boleto: Idade mínima de pedidos em boleto (dias)
        lote: Máximo de pedidos verificados por execução
    """

    limiar_cartao: timedelta = field(default_factory=lambda: timedelta(minutes=15))
    limiar_pix: timedelta = field(default_factory=lambda: timedelta(hours=1))
    limiar_boleto: timedelta = field(default_factory=lambda: timedelta(days=1))
    lote: int = 100

    def limiar_para(self, metodo: MetodoPagamento) -> timedelta:
        return {
            MetodoPagamento.CARTAO_CREDITO: self.limiar_cartao,
            MetodoPagamento.PIX: self.limiar_pix,
            MetodoPagamento.BOLETO: self.limiar_boleto,
        }[metodo]

    def cortes(self, momento: datetime) -> Dict[MetodoPagamento, datetime]:
        """Data de criação máxima, por método, para entrar na varredura."""
        return {metodo: momento - self.limiar_para(metodo) for metodo in MetodoPagamento}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfiguracaoConciliacao":
        """
        Monta a configuração a partir do dicionário das settings.

        Example:
            ConfiguracaoConciliacao.from_dict({
                'cartao_minutos': 15, 'pix_horas': 1,
                'boleto_dias': 1, 'lote': 100,
            })
        """
        padrao = cls()
        return cls(
            limiar_cartao=timedelta(minutes=int(data.get("cartao_minutos", padrao.limiar_cartao.total_seconds() // 60))),
            limiar_pix=timedelta(hours=int(data.get("pix_horas", padrao.limiar_pix.total_seconds() // 3600))),
            limiar_boleto=timedelta(days=int(data.get("boleto_dias", padrao.limiar_boleto.days))),
            lote=int(data.get("lote", padrao.lote)),
        )
