"""
Core Domain Layer - O Hexágono.

Este pacote contém a máquina de estados de pedidos/checkout, sem
dependências de frameworks:
- Zero dependências externas (Django, Celery, requests)
- 100% testável sem banco de dados nem gateway real
- Gateway de pagamento, catálogo, matrícula e identidade entram por Ports
"""
