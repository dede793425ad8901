"""
Define as rotas da API REST: frete, pagamentos, webhooks, etiquetas,
pedidos e o checkout em etapas.
"""
from django.urls import path
from . import views


urlpatterns = [
    # ====================================================================
    # 1. FRETE E PAGAMENTO
    # ====================================================================
    path('frete/cotar/', views.CotarFreteView.as_view(), name='cotar_frete'),
    path('pagamentos/', views.CriarPagamentoView.as_view(), name='criar_pagamento'),

    # ====================================================================
    # 2. WEBHOOKS (Mercado Pago / Melhor Envio)
    # ====================================================================
    path('webhooks/mercadopago/', views.WebhookMercadoPagoView.as_view(), name='webhook_mercadopago'),
    path('webhooks/melhorenvio/', views.WebhookMelhorEnvioView.as_view(), name='webhook_melhorenvio'),

    # ====================================================================
    # 3. ETIQUETAS E PEDIDOS (Admin)
    # ====================================================================
    path('etiquetas/', views.GerarEtiquetaView.as_view(), name='gerar_etiqueta'),
    path('etiquetas/<uuid:pedido_id>/reconciliar/', views.ReconciliarEtiquetaView.as_view(), name='reconciliar_etiqueta'),
    path('pedidos/<uuid:pedido_id>/', views.DetalhePedidoView.as_view(), name='detalhe_pedido'),
    path('pedidos/<uuid:pedido_id>/status/', views.AtualizarStatusPedidoView.as_view(), name='atualizar_status_pedido'),

    # ====================================================================
    # 4. CHECKOUT EM ETAPAS
    # ====================================================================
    path('checkout/', views.CheckoutView.as_view(), name='checkout'),
    path('checkout/endereco/', views.CheckoutEnderecoView.as_view(), name='checkout_endereco'),
    path('checkout/frete/', views.CheckoutFreteView.as_view(), name='checkout_frete'),
    path('checkout/voltar/', views.CheckoutVoltarView.as_view(), name='checkout_voltar'),
    path('checkout/pagamento/', views.CheckoutPagamentoView.as_view(), name='checkout_pagamento'),
]
