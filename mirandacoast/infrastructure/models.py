# Define os modelos do banco de dados da camada de infraestrutura (pedidos e itens).

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from mirandacoast.core import status as ciclo
from mirandacoast.core.entities import EtapaEtiqueta


# ====================================================================
# PEDIDO
# ====================================================================

class Pedido(models.Model):
    """
    Uma tentativa de checkout.
    Endereço e serviço de frete são snapshots JSON gravados na criação.
    """
    STATUS_CHOICES = [
        (ciclo.PENDENTE, 'Pendente'),
        (ciclo.CONFIRMADO, 'Confirmado'),
        (ciclo.PROCESSANDO, 'Em Preparação'),
        (ciclo.ENVIADO, 'Enviado'),
        (ciclo.ENTREGUE, 'Entregue'),
        (ciclo.CANCELADO, 'Cancelado'),
        (ciclo.FALHOU, 'Falhou'),
    ]

    PAGAMENTO_CHOICES = [
        (ciclo.PAGAMENTO_PENDENTE, 'Pendente'),
        (ciclo.PAGAMENTO_APROVADO, 'Aprovado'),
        (ciclo.PAGAMENTO_REJEITADO, 'Rejeitado'),
        (ciclo.PAGAMENTO_PAGO, 'Pago'),
        (ciclo.PAGAMENTO_FALHOU, 'Falhou'),
    ]

    ETAPA_ETIQUETA_CHOICES = [(etapa.value, etapa.name.title()) for etapa in EtapaEtiqueta]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    usuario = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='pedidos',
    )

    # Valores
    subtotal = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )
    shipping_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )
    total = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ciclo.PENDENTE)
    payment_status = models.CharField(max_length=20, choices=PAGAMENTO_CHOICES, default=ciclo.PAGAMENTO_PENDENTE)

    # Snapshots (nunca recalculados)
    shipping_address = models.JSONField(default=dict)
    shipping_service = models.JSONField(default=dict)

    # Rastreio / pagamento
    tracking_code = models.CharField(max_length=100, blank=True, null=True)
    shipping_status = models.CharField(max_length=50, blank=True, null=True)
    mercado_pago_payment_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)

    # Progresso da etiqueta no Melhor Envio
    melhor_envio_id = models.CharField(max_length=100, blank=True, null=True)
    label_step = models.CharField(max_length=20, choices=ETAPA_ETIQUETA_CHOICES, blank=True, null=True)
    label_failed_step = models.CharField(max_length=20, blank=True, null=True)
    label_url = models.URLField(max_length=500, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Pedido'
        verbose_name_plural = 'Pedidos'
        ordering = ['-created_at']

    def __str__(self):
        return f"Pedido {self.id} ({self.status}/{self.payment_status})"


class ItemPedido(models.Model):
    """Snapshot do produto no momento da compra."""
    pedido = models.ForeignKey(Pedido, on_delete=models.CASCADE, related_name='itens')
    product_id = models.CharField(max_length=100)
    product_name = models.CharField(max_length=255)
    product_image = models.URLField(max_length=500, blank=True, null=True)
    price = models.DecimalField(
        max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))],
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    size = models.CharField(max_length=20, blank=True, null=True)
    color = models.CharField(max_length=50, blank=True, null=True)

    class Meta:
        verbose_name = 'Item do Pedido'
        verbose_name_plural = 'Itens do Pedido'

    def __str__(self):
        return f"{self.quantity}x {self.product_name} (Pedido {self.pedido_id})"
