# Configuração da interface administrativa do Django para os pedidos da Miranda Coast.

from django.contrib import admin

from mirandacoast.infrastructure.models import Pedido, ItemPedido


class ItemPedidoInline(admin.TabularInline):
    """Itens são snapshots da compra: somente leitura."""
    model = ItemPedido
    extra = 0
    can_delete = False
    readonly_fields = ('product_id', 'product_name', 'price', 'quantity', 'size', 'color', 'product_image')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Pedido)
class PedidoAdmin(admin.ModelAdmin):
    list_display = ('id', 'usuario', 'total', 'status', 'payment_status', 'tracking_code', 'label_step', 'created_at')
    list_filter = ('status', 'payment_status', 'label_step', 'created_at')
    search_fields = ('id', 'tracking_code', 'mercado_pago_payment_id', 'melhor_envio_id', 'usuario__email')
    inlines = [ItemPedidoInline]

    # Valores e snapshots nunca mudam; o status segue o ciclo de vida pela API.
    readonly_fields = (
        'id', 'usuario', 'subtotal', 'shipping_cost', 'total', 'status', 'payment_status',
        'shipping_address', 'shipping_service', 'mercado_pago_payment_id', 'melhor_envio_id',
        'label_step', 'label_failed_step', 'label_url', 'tracking_code', 'shipping_status',
        'created_at', 'updated_at',
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
