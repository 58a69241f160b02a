"""
Migration inicial para o domínio de Pedidos.

Cria as tabelas:
- pedidos / pedido_itens: Pedidos e itens
- pedido_eventos_status: Histórico de transições
- concessoes_acesso: Acessos liberados
- catalogo_produtos, matriculas, liberacoes_download: Colaboradores
"""

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


STATUS_PEDIDO = [
    ('PENDING', 'Pendente'),
    ('PROCESSING', 'Processando'),
    ('COMPLETED', 'Concluído'),
    ('CANCELED', 'Cancelado'),
]

TIPO_PRODUTO = [
    ('course', 'Curso'),
    ('paper', 'Paper'),
    ('ebook', 'E-book'),
]


class Migration(migrations.Migration):
    """Migration inicial."""

    initial = True

    dependencies = [
    ]

    operations = [
        # =================================================================
        # Tabela: pedidos
        # =================================================================
        migrations.CreateModel(
            name='PedidoModel',
            fields=[
                ('id', models.CharField(
                    max_length=36,
                    primary_key=True,
                    serialize=False,
                    editable=False,
                    help_text='UUID único do pedido'
                )),
                ('usuario_id', models.CharField(
                    max_length=100,
                    null=True,
                    blank=True,
                    db_index=True,
                    help_text='ID do usuário dono do pedido'
                )),
                ('valor_total', models.PositiveIntegerField(
                    help_text='Valor total em centavos'
                )),
                ('metodo_pagamento', models.CharField(
                    max_length=20,
                    choices=[
                        ('CREDIT_CARD', 'Cartão de crédito'),
                        ('PIX', 'PIX'),
                        ('BOLETO', 'Boleto'),
                    ],
                    help_text='Trilho de pagamento'
                )),
                ('status', models.CharField(
                    max_length=20,
                    choices=STATUS_PEDIDO,
                    default='PENDING',
                    db_index=True,
                    help_text='Estado do pedido'
                )),
                ('status_pagamento', models.CharField(
                    max_length=20,
                    choices=[
                        ('PENDING', 'Pendente'),
                        ('PROCESSING', 'Processando'),
                        ('CONFIRMED', 'Confirmado'),
                        ('OVERDUE', 'Vencido'),
                        ('REFUNDED', 'Estornado'),
                        ('FAILED', 'Falhou'),
                        ('CANCELED', 'Cancelado'),
                    ],
                    default='PENDING',
                    help_text='Situação do pagamento no gateway'
                )),
                ('cobranca_id', models.CharField(
                    max_length=100,
                    null=True,
                    blank=True,
                    unique=True,
                    help_text='ID da cobrança no gateway'
                )),
                ('cliente', models.JSONField(
                    default=dict,
                    help_text='Dados de cobrança do comprador'
                )),
                ('parcelas', models.PositiveSmallIntegerField(
                    default=1,
                    help_text='Parcelas do cartão'
                )),
                ('pix_copia_e_cola', models.TextField(null=True, blank=True)),
                ('pix_qr_code', models.TextField(null=True, blank=True)),
                ('pix_expira_em', models.DateTimeField(null=True, blank=True)),
                ('boleto_url', models.URLField(max_length=500, null=True, blank=True)),
                ('boleto_codigo_barras', models.CharField(max_length=100, null=True, blank=True)),
                ('motivo_recusa', models.CharField(max_length=500, null=True, blank=True)),
                ('concessao_pendente', models.BooleanField(
                    default=False,
                    db_index=True,
                    help_text='Pedido pago com acessos ainda não liberados'
                )),
                ('verificado_em', models.DateTimeField(
                    null=True,
                    blank=True,
                    help_text='Última verificação da conciliação'
                )),
                ('criado_em', models.DateTimeField(
                    default=django.utils.timezone.now,
                    db_index=True,
                    help_text='Data/hora de criação'
                )),
                ('atualizado_em', models.DateTimeField(
                    default=django.utils.timezone.now,
                    help_text='Data/hora da última alteração'
                )),
            ],
            options={
                'db_table': 'pedidos',
                'verbose_name': 'Pedido',
                'verbose_name_plural': 'Pedidos',
                'ordering': ['-criado_em'],
                'indexes': [
                    models.Index(fields=['status', 'criado_em'], name='idx_pedido_status_criado'),
                    models.Index(fields=['usuario_id', 'criado_em'], name='idx_pedido_usuario_criado'),
                ],
            },
        ),

        # =================================================================
        # Tabela: pedido_itens
        # =================================================================
        migrations.CreateModel(
            name='ItemPedidoModel',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID'
                )),
                ('posicao', models.PositiveSmallIntegerField(default=0)),
                ('produto_tipo', models.CharField(max_length=10, choices=TIPO_PRODUTO)),
                ('produto_id', models.CharField(max_length=100)),
                ('titulo', models.CharField(max_length=300)),
                ('preco_centavos', models.PositiveIntegerField()),
                ('pedido', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='itens',
                    to='pedidos.pedidomodel'
                )),
            ],
            options={
                'db_table': 'pedido_itens',
                'verbose_name': 'Item de Pedido',
                'verbose_name_plural': 'Itens de Pedido',
                'ordering': ['posicao'],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('pedido', 'produto_tipo', 'produto_id'),
                        name='item_unico_por_pedido'
                    ),
                ],
            },
        ),

        # =================================================================
        # Tabela: pedido_eventos_status
        # =================================================================
        migrations.CreateModel(
            name='EventoStatusModel',
            fields=[
                ('id', models.CharField(
                    max_length=36,
                    primary_key=True,
                    serialize=False,
                    editable=False
                )),
                ('sequencia', models.PositiveIntegerField(
                    help_text='Posição no histórico do pedido'
                )),
                ('status_anterior', models.CharField(max_length=20, choices=STATUS_PEDIDO)),
                ('status_novo', models.CharField(max_length=20, choices=STATUS_PEDIDO)),
                ('origem', models.CharField(
                    max_length=20,
                    choices=[
                        ('webhook', 'Webhook'),
                        ('poll', 'Conciliação'),
                        ('sync-response', 'Resposta síncrona'),
                        ('manual', 'Manual'),
                    ]
                )),
                ('aceito', models.BooleanField(db_index=True)),
                ('motivo_rejeicao', models.CharField(max_length=30, null=True, blank=True)),
                ('resultado_gateway', models.CharField(max_length=20, null=True, blank=True)),
                ('payload_bruto', models.JSONField(
                    default=dict,
                    help_text='Payload original do gateway (auditoria)'
                )),
                ('ocorrido_em', models.DateTimeField(db_index=True)),
                ('pedido', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='eventos_status',
                    to='pedidos.pedidomodel'
                )),
            ],
            options={
                'db_table': 'pedido_eventos_status',
                'verbose_name': 'Evento de Status',
                'verbose_name_plural': 'Eventos de Status',
                'ordering': ['pedido', 'sequencia'],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('pedido', 'sequencia'),
                        name='evento_status_sequencia_unica'
                    ),
                ],
            },
        ),

        # =================================================================
        # Tabela: concessoes_acesso
        # =================================================================
        migrations.CreateModel(
            name='ConcessaoAcessoModel',
            fields=[
                ('id', models.CharField(
                    max_length=36,
                    primary_key=True,
                    serialize=False,
                    editable=False
                )),
                ('produto_tipo', models.CharField(max_length=10, choices=TIPO_PRODUTO)),
                ('produto_id', models.CharField(max_length=100)),
                ('usuario_id', models.CharField(max_length=100, db_index=True)),
                ('concedido_em', models.DateTimeField(default=django.utils.timezone.now)),
                ('pedido', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='concessoes',
                    to='pedidos.pedidomodel'
                )),
            ],
            options={
                'db_table': 'concessoes_acesso',
                'verbose_name': 'Concessão de Acesso',
                'verbose_name_plural': 'Concessões de Acesso',
                'constraints': [
                    models.UniqueConstraint(
                        fields=('pedido', 'produto_tipo', 'produto_id'),
                        name='concessao_unica_por_produto'
                    ),
                ],
            },
        ),

        # =================================================================
        # Colaboradores
        # =================================================================
        migrations.CreateModel(
            name='ProdutoCatalogoModel',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID'
                )),
                ('tipo', models.CharField(max_length=10, choices=TIPO_PRODUTO)),
                ('produto_id', models.CharField(max_length=100)),
                ('titulo', models.CharField(max_length=300)),
                ('preco_centavos', models.PositiveIntegerField()),
                ('ativo', models.BooleanField(default=True)),
                ('atualizado_em', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'catalogo_produtos',
                'verbose_name': 'Produto do Catálogo',
                'verbose_name_plural': 'Produtos do Catálogo',
                'constraints': [
                    models.UniqueConstraint(
                        fields=('tipo', 'produto_id'),
                        name='produto_catalogo_unico'
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='MatriculaModel',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID'
                )),
                ('usuario_id', models.CharField(max_length=100, db_index=True)),
                ('curso_id', models.CharField(max_length=100)),
                ('criado_em', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'matriculas',
                'constraints': [
                    models.UniqueConstraint(
                        fields=('usuario_id', 'curso_id'),
                        name='matricula_unica'
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='LiberacaoDownloadModel',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID'
                )),
                ('usuario_id', models.CharField(max_length=100, db_index=True)),
                ('produto_tipo', models.CharField(max_length=10, choices=TIPO_PRODUTO)),
                ('produto_id', models.CharField(max_length=100)),
                ('url_download', models.URLField(max_length=500)),
                ('criado_em', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'liberacoes_download',
                'constraints': [
                    models.UniqueConstraint(
                        fields=('usuario_id', 'produto_tipo', 'produto_id'),
                        name='liberacao_unica'
                    ),
                ],
            },
        ),
    ]
