# mirandacoast/core/dependency_injection.py
"""
Módulo de Injeção de Dependência (DI).
Responsável por instanciar os Use Cases com suas dependências de Repositórios/Gateways
concretos da camada de Infraestrutura.
"""
from functools import lru_cache

from django.conf import settings

from mirandacoast.core.config import ConfiguracaoLoja, Remetente
from mirandacoast.core.checkout import CheckoutUseCase
from mirandacoast.core.use_cases import (
    CotarFreteUseCase,
    CriarPedidoUseCase,
    CriarPagamentoUseCase,
    ProcessarWebhookPagamentoUseCase,
    GerarEtiquetaUseCase,
    ProcessarWebhookFreteUseCase,
    DetalharPedidoUseCase,
    AtualizarStatusPedidoUseCase,
)
from mirandacoast.infrastructure.gateways import MercadoPagoGateway, MelhorEnvioGateway
from mirandacoast.infrastructure.repositories import PedidoRepositoryDjango


@lru_cache(maxsize=1)
def get_configuracao() -> ConfiguracaoLoja:
    """Configuração da loja, montada uma única vez a partir do settings."""
    return ConfiguracaoLoja(
        mercado_pago_access_token=settings.MERCADO_PAGO_ACCESS_TOKEN,
        mercado_pago_api_url=settings.MERCADO_PAGO_API_URL,
        melhor_envio_token=settings.MELHOR_ENVIO_API_TOKEN,
        melhor_envio_api_url=settings.MELHOR_ENVIO_API_URL,
        user_agent=settings.MELHOR_ENVIO_USER_AGENT,
        nome_loja=settings.LOJA_NOME,
        plataforma=settings.LOJA_NOME,
        statement_descriptor=settings.MERCADO_PAGO_STATEMENT_DESCRIPTOR,
        cep_origem=settings.LOJA_CEP_ORIGEM,
        endereco_retirada=settings.LOJA_ENDERECO_RETIRADA,
        public_site_url=settings.PUBLIC_SITE_URL,
        webhook_pagamento_url=settings.MERCADO_PAGO_WEBHOOK_URL,
        timeout=settings.API_TIMEOUT,
        remetente=Remetente(**settings.LOJA_REMETENTE),
    )


# Repositórios e Gateways Concretos
def get_pedido_repo() -> PedidoRepositoryDjango:
    return PedidoRepositoryDjango()

def get_gateway_pagamento() -> MercadoPagoGateway:
    return MercadoPagoGateway(get_configuracao())

def get_gateway_frete() -> MelhorEnvioGateway:
    return MelhorEnvioGateway(get_configuracao())


# ====================================================================
# Use Cases de Frete/Pagamento
# ====================================================================

def get_cotar_frete_use_case() -> CotarFreteUseCase:
    return CotarFreteUseCase(get_gateway_frete(), get_configuracao())

def get_criar_pedido_use_case() -> CriarPedidoUseCase:
    return CriarPedidoUseCase(get_pedido_repo())

def get_criar_pagamento_use_case() -> CriarPagamentoUseCase:
    return CriarPagamentoUseCase(get_gateway_pagamento(), get_pedido_repo(), get_configuracao())

def get_processar_webhook_pagamento_use_case() -> ProcessarWebhookPagamentoUseCase:
    return ProcessarWebhookPagamentoUseCase(get_gateway_pagamento(), get_pedido_repo())

def get_checkout_use_case() -> CheckoutUseCase:
    return CheckoutUseCase(
        cotar_frete=get_cotar_frete_use_case(),
        criar_pedido=get_criar_pedido_use_case(),
        criar_pagamento=get_criar_pagamento_use_case(),
        pedido_repo=get_pedido_repo(),
    )


# ====================================================================
# Use Cases de Expedição/Administração
# ====================================================================

def get_gerar_etiqueta_use_case() -> GerarEtiquetaUseCase:
    return GerarEtiquetaUseCase(get_gateway_frete(), get_pedido_repo(), get_configuracao())

def get_processar_webhook_frete_use_case() -> ProcessarWebhookFreteUseCase:
    return ProcessarWebhookFreteUseCase(get_pedido_repo())

def get_detalhar_pedido_use_case() -> DetalharPedidoUseCase:
    return DetalharPedidoUseCase(get_pedido_repo())

def get_atualizar_status_pedido_use_case() -> AtualizarStatusPedidoUseCase:
    return AtualizarStatusPedidoUseCase(get_pedido_repo())
