"""
Mapeadores (Mappers) para converter entre:
1. Modelos do Django ORM
2. Entidades de Domínio (mirandacoast.core.entities)
"""
from typing import Any, Optional, List
from django.apps import apps

from mirandacoast.core.entities import (
    Endereco as EnderecoEntity,
    OpcaoFrete as OpcaoFreteEntity,
    Pedido as PedidoEntity,
    ItemPedido as ItemPedidoEntity,
)


# ====================================================================
# Uso de apps.get_model para evitar dependências circulares
# ====================================================================

def get_model(app_label: str, model_name: str):
    """Retorna um modelo do Django de forma segura (lazy loading)."""
    return apps.get_model(app_label, model_name)

def get_pedido_model():
    return get_model('infrastructure', 'Pedido')

def get_item_pedido_model():
    return get_model('infrastructure', 'ItemPedido')


class ItemPedidoMapper:
    """Mapeador para ItemPedido."""

    @staticmethod
    def to_entity(model: Any) -> Optional[ItemPedidoEntity]:
        if not model: return None
        return ItemPedidoEntity(
            product_id=model.product_id,
            product_name=model.product_name,
            price=model.price,
            quantity=model.quantity,
            product_image=model.product_image,
            size=model.size,
            color=model.color,
            pedido_id=str(model.pedido_id),
        )

    @staticmethod
    def to_model(entity: ItemPedidoEntity, pedido_id: str) -> Any:
        # Não salva: os itens são inseridos em lote pelo repositório
        return get_item_pedido_model()(
            pedido_id=pedido_id,
            product_id=str(entity.product_id),
            product_name=entity.product_name,
            product_image=entity.product_image,
            price=entity.price,
            quantity=entity.quantity,
            size=entity.size,
            color=entity.color,
        )


class PedidoMapper:
    """Mapeador para Pedido, incluindo os snapshots de endereço e frete."""

    @staticmethod
    def to_entity(model: Any, itens: Optional[List[Any]] = None) -> Optional[PedidoEntity]:
        if not model: return None

        if itens is None:
            itens = model.itens.all()

        return PedidoEntity(
            id=str(model.id),
            usuario_id=model.usuario_id,
            subtotal=model.subtotal,
            shipping_cost=model.shipping_cost,
            total=model.total,
            status=model.status,
            payment_status=model.payment_status,
            shipping_address=EnderecoEntity.from_dict(model.shipping_address),
            shipping_service=OpcaoFreteEntity.from_dict(model.shipping_service or {}),
            tracking_code=model.tracking_code,
            shipping_status=model.shipping_status,
            mercado_pago_payment_id=model.mercado_pago_payment_id,
            melhor_envio_id=model.melhor_envio_id,
            label_step=model.label_step,
            label_failed_step=model.label_failed_step,
            label_url=model.label_url,
            itens=[ItemPedidoMapper.to_entity(item) for item in itens],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def to_model(entity: PedidoEntity) -> Any:
        servico = entity.shipping_service.to_dict() if entity.shipping_service else {}
        servico['pickup'] = bool(entity.shipping_service and entity.shipping_service.pickup)
        return get_pedido_model()(
            id=entity.id,
            usuario_id=entity.usuario_id,
            subtotal=entity.subtotal,
            shipping_cost=entity.shipping_cost,
            total=entity.total,
            status=entity.status,
            payment_status=entity.payment_status,
            shipping_address=entity.shipping_address.to_dict(),
            shipping_service=servico,
            tracking_code=entity.tracking_code,
            shipping_status=entity.shipping_status,
            mercado_pago_payment_id=entity.mercado_pago_payment_id,
            melhor_envio_id=entity.melhor_envio_id,
            label_step=entity.label_step,
            label_failed_step=entity.label_failed_step,
            label_url=entity.label_url,
        )
