#!/usr/bin/env python
"""
Setup rápido para desenvolvimento local.

Este script:
1. Configura Django settings
2. Executa migrations
3. Popula o catálogo com produtos de exemplo (opcional)

Uso:
    python scripts/quick_setup.py
    python scripts/quick_setup.py --with-sample-data
"""

import os
import sys
import argparse

# Raiz do projeto no path (imports src.*)
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


PRODUTOS_EXEMPLO = [
    ('course', 'metodologia-cientifica', 'Curso de Metodologia Científica', 19900),
    ('course', 'estatistica-basica', 'Estatística Básica para Pesquisa', 14900),
    ('paper', 'revisao-sistematica-2024', 'Revisão Sistemática: Guia Prático', 2990),
    ('ebook', 'escrita-academica', 'E-book Escrita Acadêmica', 4990),
]


def setup_django():
    """Configura Django para uso standalone."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'src.config.settings')

    import django
    django.setup()


def run_migrations():
    """Executa migrations."""
    from django.core.management import call_command

    print("📦 Executando migrations...")
    call_command('migrate', verbosity=1)
    print("✅ Migrations concluídas!")


def create_sample_data():
    """Popula o catálogo de preços."""
    from src.adapters.django_app.pedidos.models import ProdutoCatalogoModel

    print("📝 Populando catálogo...")

    for tipo, produto_id, titulo, preco in PRODUTOS_EXEMPLO:
        ProdutoCatalogoModel.objects.update_or_create(
            tipo=tipo,
            produto_id=produto_id,
            defaults={'titulo': titulo, 'preco_centavos': preco, 'ativo': True},
        )
        print(f"   ✓ {tipo}:{produto_id} R$ {preco / 100:.2f}")

    print(f"✅ {len(PRODUTOS_EXEMPLO)} produtos no catálogo!")


def check_connection():
    """Verifica conexão com o banco."""
    from django.db import connection
    from django.db.utils import OperationalError

    print("🔍 Verificando conexão com o banco...")

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        print("✅ Conexão OK!")
        return True
    except OperationalError as e:
        print(f"❌ Erro de conexão: {e}")
        return False


def show_info():
    """Mostra informações do setup."""
    from django.conf import settings

    print("\n" + "=" * 60)
    print("📊 Informações do Setup")
    print("=" * 60)
    print(f"  Database Engine: {settings.DATABASES['default']['ENGINE']}")
    print(f"  Database Name: {settings.DATABASES['default']['NAME']}")
    print(f"  Asaas: {settings.ASAAS_AMBIENTE}")
    print(f"  Debug Mode: {settings.DEBUG}")
    print("=" * 60)
    print("\n🚀 Próximos passos:")
    print("   1. django-admin runserver --settings=src.config.settings")
    print("   2. celery -A src.config.celery worker -B -l INFO")
    print("   3. POST http://localhost:8000/checkout/")
    print("\n")


def main():
    parser = argparse.ArgumentParser(description='Setup rápido para desenvolvimento')
    parser.add_argument(
        '--with-sample-data',
        action='store_true',
        help='Popular catálogo de exemplo'
    )
    parser.add_argument(
        '--check-only',
        action='store_true',
        help='Apenas verificar conexão'
    )

    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("🔧 Checkout - Quick Setup")
    print("=" * 60 + "\n")

    setup_django()

    if args.check_only:
        check_connection()
        return

    if not check_connection():
        print("\n⚠️  Certifique-se de que o banco de dados está rodando.")
        return

    run_migrations()

    if args.with_sample_data:
        create_sample_data()

    show_info()


if __name__ == '__main__':
    main()
