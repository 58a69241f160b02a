"""
Event Handlers - Processadores de Eventos de Domínio.

Handlers são executados de forma assíncrona via Celery quando os
eventos dos pedidos são publicados (após commit).

Tipos de Handlers:
- Notificação: Email de confirmação ao comprador
- Alerta: Operação avisada de cobrança desconhecida e acesso não liberado
- Métricas: Funil do checkout, entregas repetidas de webhook
- Varreduras (Beat): Conciliação de pedidos e reprocesso de concessões

Padrão:
    @shared_task(bind=True, ...)
    def handle_<evento>(self, event_data: dict) -> None:
        # Processar evento
"""

import logging
from typing import Any, Dict

from celery import shared_task
from django.conf import settings
from django.core.mail import mail_admins, send_mail

logger = logging.getLogger(__name__)


# =============================================================================
# Event Handlers - Pedidos
# =============================================================================

@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def handle_pedido_criado(self, event_data: Dict[str, Any]) -> None:
    """
    Handler para PedidoCriadoEvent.

    Ações:
    - Métrica de funil (checkouts iniciados por método)
    """
    pedido_id = event_data.get('aggregate_id')
    metodo = event_data.get('metodo_pagamento', '')

    logger.info(
        f"[HANDLER] PedidoCriado: {pedido_id} | "
        f"Método: {metodo} | Valor: {event_data.get('valor_total')}"
    )

    record_metric.delay(
        metric_name='checkouts_iniciados',
        value=1,
        tags={'metodo': metodo, 'visitante': str(not event_data.get('usuario_id'))},
    )


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def handle_pedido_status_alterado(self, event_data: Dict[str, Any]) -> None:
    """Handler para PedidoStatusAlteradoEvent: métrica por origem."""
    pedido_id = event_data.get('aggregate_id')
    status_novo = event_data.get('status_novo')
    origem = event_data.get('origem')

    logger.info(
        f"[HANDLER] PedidoStatusAlterado: {pedido_id} | "
        f"{event_data.get('status_anterior')} -> {status_novo} ({origem})"
    )

    record_metric.delay(
        metric_name='transicoes_pedido',
        value=1,
        tags={'status': status_novo, 'origem': origem},
    )


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    acks_late=True,
)
def handle_pedido_concluido(self, event_data: Dict[str, Any]) -> None:
    """
    Handler para PedidoConcluidoEvent.

    Ações:
    - Email de confirmação ao comprador
    - Métrica de receita
    """
    pedido_id = event_data.get('aggregate_id')
    email = event_data.get('email_cliente')
    valor_total = event_data.get('valor_total', 0)

    logger.info(f"[HANDLER] PedidoConcluido: {pedido_id} | Valor: {valor_total}")

    if email:
        send_mail(
            subject='Pagamento confirmado',
            message=(
                f"Recebemos o pagamento do pedido {pedido_id[:8]}. "
                f"Seu acesso aos produtos já está disponível na sua conta."
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
        )

    record_metric.delay(
        metric_name='receita_centavos',
        value=valor_total,
        tags={'metodo': event_data.get('metodo_pagamento', '')},
    )


@shared_task(bind=True, max_retries=3, default_retry_delay=60, acks_late=True)
def handle_transicao_rejeitada(self, event_data: Dict[str, Any]) -> None:
    """
    Handler para TransicaoRejeitadaEvent.

    Entregas duplicadas são esperadas (webhooks reenviados); transições
    ilegais merecem acompanhamento no painel.
    """
    motivo = event_data.get('motivo')

    logger.info(
        f"[HANDLER] TransicaoRejeitada: {event_data.get('aggregate_id')} | "
        f"{event_data.get('status_atual')} -> {event_data.get('status_pretendido')} "
        f"({motivo}, {event_data.get('origem')})"
    )

    record_metric.delay(
        metric_name='transicoes_rejeitadas',
        value=1,
        tags={'motivo': motivo, 'origem': event_data.get('origem')},
    )


@shared_task(bind=True, max_retries=3, default_retry_delay=60, acks_late=True)
def handle_acesso_concedido(self, event_data: Dict[str, Any]) -> None:
    """Handler para AcessoConcedidoEvent."""
    logger.info(
        f"[HANDLER] AcessoConcedido: pedido {event_data.get('aggregate_id')} | "
        f"{event_data.get('produto_tipo')}:{event_data.get('produto_id')} -> "
        f"usuário {event_data.get('usuario_id')}"
    )

    record_metric.delay(
        metric_name='acessos_concedidos',
        value=1,
        tags={'tipo': event_data.get('produto_tipo')},
    )


@shared_task(bind=True, max_retries=3, default_retry_delay=60, acks_late=True)
def handle_falha_concessao(self, event_data: Dict[str, Any]) -> None:
    """
    Handler para FalhaConcessaoEvent.

    O cliente pagou e ainda não tem acesso: operação é alertada.
    A varredura reprocessar_concessoes_pendentes tenta de novo.
    """
    pedido_id = event_data.get('aggregate_id')
    motivo = event_data.get('motivo', '')

    logger.error(f"[HANDLER] FalhaConcessao: {pedido_id} | Motivo: {motivo}")

    alertar_operadores.delay(
        assunto=f"Acesso não liberado para o pedido pago {pedido_id}",
        mensagem=motivo,
    )
    record_metric.delay(metric_name='falhas_concessao', value=1, tags={})


@shared_task(bind=True, max_retries=3, default_retry_delay=60, acks_late=True)
def handle_cobranca_desconhecida(self, event_data: Dict[str, Any]) -> None:
    """
    Handler para CobrancaDesconhecidaEvent.

    Webhook autenticado para uma cobrança que não pertence a nenhum
    pedido: pode ser cobrança criada manualmente no painel do gateway.
    """
    cobranca_id = event_data.get('aggregate_id')
    trilho = event_data.get('trilho')

    logger.error(
        f"[HANDLER] CobrancaDesconhecida: {cobranca_id} | "
        f"Trilho: {trilho} | Status: {event_data.get('status_bruto')}"
    )

    alertar_operadores.delay(
        assunto=f"Webhook de cobrança desconhecida ({trilho})",
        mensagem=f"Cobrança {cobranca_id} sem pedido correspondente",
    )
    record_metric.delay(metric_name='cobrancas_desconhecidas', value=1, tags={'trilho': trilho})


# =============================================================================
# Event Dispatcher (Router)
# =============================================================================

HANDLERS = {
    'PedidoCriadoEvent': handle_pedido_criado,
    'PedidoStatusAlteradoEvent': handle_pedido_status_alterado,
    'PedidoConcluidoEvent': handle_pedido_concluido,
    'TransicaoRejeitadaEvent': handle_transicao_rejeitada,
    'AcessoConcedidoEvent': handle_acesso_concedido,
    'FalhaConcessaoEvent': handle_falha_concessao,
    'CobrancaDesconhecidaEvent': handle_cobranca_desconhecida,
}


def achatar_evento(event_data: Dict[str, Any]) -> Dict[str, Any]:
    """Campos específicos do evento (chave data) no mesmo nível do envelope."""
    plano = {chave: valor for chave, valor in event_data.items() if chave != 'data'}
    plano.update(event_data.get('data') or {})
    return plano


@shared_task(bind=True, max_retries=5, default_retry_delay=30)
def dispatch_domain_event(self, event_type: str, event_data: Dict[str, Any]) -> None:
    """
    Dispatcher central para Domain Events.

    Args:
        event_type: Tipo do evento (ex: 'PedidoConcluidoEvent')
        event_data: Dados do evento serializado
    """
    handler = HANDLERS.get(event_type)

    if handler:
        logger.info(f"[DISPATCHER] Roteando {event_type} para handler")
        handler.delay(achatar_evento(event_data))
    else:
        logger.warning(f"[DISPATCHER] Handler não encontrado para {event_type}")


# =============================================================================
# Alertas e métricas
# =============================================================================

@shared_task(bind=True, max_retries=3, default_retry_delay=120, autoretry_for=(Exception,))
def alertar_operadores(self, assunto: str, mensagem: str) -> None:
    """
    Alerta a operação (ADMINS do Django) por email.

    Args:
        assunto: Linha de assunto
        mensagem: Detalhes do problema
    """
    logger.warning(f"[ALERTA] {assunto}: {mensagem}")
    mail_admins(subject=assunto, message=mensagem)


@shared_task(bind=True, ignore_result=True)
def record_metric(
    self,
    metric_name: str,
    value: float,
    tags: Dict[str, str] = None
) -> None:
    """
    Registra métrica para monitoramento.

    Args:
        metric_name: Nome da métrica
        value: Valor
        tags: Tags para dimensões
    """
    logger.info(f"[METRIC] {metric_name}={value} | tags={tags or {}}")


# =============================================================================
# Scheduled Tasks (Beat)
# =============================================================================

@shared_task(bind=True)
def conciliar_pedidos_pendentes(self) -> Dict[str, int]:
    """
    Reconsulta no gateway os pedidos parados além do limiar do método.

    Executada periodicamente pelo Celery Beat
    (CONCILIACAO_INTERVALO_SEGUNDOS).

    Returns:
        Contadores da execução
    """
    logger.info("[SCHEDULED] Conciliando pedidos pendentes...")

    try:
        from src.config.container import get_container

        service = get_container().conciliar_pedidos_service()
        relatorio = service.execute()

        record_metric.delay(
            metric_name='conciliacao_transicoes',
            value=relatorio.transicoes,
            tags={},
        )
        return relatorio.to_dict()

    except Exception as e:
        logger.error(f"Erro na conciliação de pedidos: {e}", exc_info=True)
        return {}


@shared_task(bind=True)
def reprocessar_concessoes_pendentes(self, limite: int = 100) -> Dict[str, int]:
    """
    Tenta de novo liberar acesso de pedidos pagos com concessão pendente.

    Executada periodicamente pelo Celery Beat
    (CONCESSAO_INTERVALO_SEGUNDOS).
    """
    logger.info("[SCHEDULED] Reprocessando concessões pendentes...")

    try:
        from src.config.container import get_container

        service = get_container().reprocessar_concessoes_service()
        return service.execute(limite=limite).to_dict()

    except Exception as e:
        logger.error(f"Erro ao reprocessar concessões: {e}", exc_info=True)
        return {}
