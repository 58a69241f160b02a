"""
Configuração do Celery para processamento assíncrono.

O Celery é usado para:
- Processar Domain Events dos pedidos de forma assíncrona
- Conciliação periódica de pedidos parados (Reconciliation Poller)
- Reprocesso de concessões de acesso que falharam
- Notificações (email de confirmação, alertas para a operação)

Arquitetura:
- Broker: RabbitMQ (mensagens entre Django e Workers)
- Backend: Redis (resultados de tarefas)
- Workers: Processos que executam as tarefas

Uso:
    # Iniciar worker
    celery -A src.config.celery worker -l INFO

    # Iniciar beat (tarefas agendadas)
    celery -A src.config.celery beat -l INFO
"""

import os
from celery import Celery
from kombu import Queue, Exchange

# Definir módulo de settings do Django
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'src.config.settings')

# Criar aplicação Celery
app = Celery('checkout')

# Carregar configurações do Django
app.config_from_object('django.conf:settings', namespace='CELERY')

# Broker, serialização, acks e retry vêm de CELERY_* em settings
app.conf.update(
    worker_send_task_events=True,
    task_send_sent_event=True,
)

# Definir filas
app.conf.task_queues = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('events', Exchange('events'), routing_key='events.#'),
    Queue('conciliacao', Exchange('conciliacao'), routing_key='conciliacao.#'),
)

# Roteamento de tarefas para filas
app.conf.task_routes = {
    'src.adapters.django_app.events.handlers.conciliar_pedidos_pendentes': {'queue': 'conciliacao'},
    'src.adapters.django_app.events.handlers.reprocessar_concessoes_pendentes': {'queue': 'conciliacao'},
    'src.adapters.django_app.events.handlers.*': {'queue': 'events'},
}

# Auto-descoberta de tarefas
app.autodiscover_tasks([
    'src.adapters.django_app.events',
], related_name='handlers')

# Tarefas agendadas (beat)
app.conf.beat_schedule = {
    # Reconsultar no gateway pedidos parados além do limiar do método
    'conciliar-pedidos-pendentes': {
        'task': 'src.adapters.django_app.events.handlers.conciliar_pedidos_pendentes',
        'schedule': float(os.environ.get('CONCILIACAO_INTERVALO_SEGUNDOS', 300)),
    },

    # Liberar acessos de pedidos pagos que falharam na concessão
    'reprocessar-concessoes-pendentes': {
        'task': 'src.adapters.django_app.events.handlers.reprocessar_concessoes_pendentes',
        'schedule': float(os.environ.get('CONCESSAO_INTERVALO_SEGUNDOS', 600)),
    },
}
