from rest_framework import serializers

from mirandacoast.core import status as ciclo
from mirandacoast.core.entities import Endereco, ItemPedido, Pagador


# ====================================================================
# SERIALIZERS DE FRETE
# ====================================================================

class ProdutoFreteSerializer(serializers.Serializer):
    """Dimensões de uma linha do carrinho (cm / kg). Campos ausentes usam o pacote padrão."""
    width = serializers.DecimalField(max_digits=8, decimal_places=3, required=False, allow_null=True)
    height = serializers.DecimalField(max_digits=8, decimal_places=3, required=False, allow_null=True)
    length = serializers.DecimalField(max_digits=8, decimal_places=3, required=False, allow_null=True)
    weight = serializers.DecimalField(max_digits=8, decimal_places=3, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1, default=1)


class CotacaoFreteSerializer(serializers.Serializer):
    from_postal_code = serializers.CharField(max_length=9, required=False, allow_blank=True)
    to_postal_code = serializers.CharField(max_length=9)
    products = ProdutoFreteSerializer(many=True, required=False, default=list)


class OpcaoFreteSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    company = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2, coerce_to_string=False)
    delivery_time = serializers.IntegerField(allow_null=True)
    delivery_range = serializers.DictField(allow_null=True)
    currency = serializers.CharField()
    pickup = serializers.BooleanField()
    address = serializers.CharField(allow_null=True)

    def to_representation(self, instance):
        return instance.to_dict()


# ====================================================================
# SERIALIZER DE PAGAMENTO (Mercado Pago)
# ====================================================================

class PagamentoSerializer(serializers.Serializer):
    """
    Forma do corpo da criação de pagamento. A conversão para a solicitação
    (preferência ou cobrança direta) acontece em `montar_solicitacao`.
    """
    items = serializers.ListField(child=serializers.DictField(), allow_empty=False)
    payer = serializers.DictField()
    external_reference = serializers.CharField()
    back_urls = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)
    payment_method_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    token = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    installments = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    shipping_cost = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0,
    )


# ====================================================================
# SERIALIZERS DE PEDIDO / ETIQUETA
# ====================================================================

class EtiquetaSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    service_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StatusPedidoSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ciclo.STATUS_VALIDOS)


class ItemPedidoSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=100)
    product_name = serializers.CharField(max_length=255)
    product_image = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, coerce_to_string=False)
    quantity = serializers.IntegerField(min_value=1)
    size = serializers.CharField(max_length=20, required=False, allow_blank=True, allow_null=True)
    color = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)


class PedidoSerializer(serializers.Serializer):
    """Representação de leitura do Pedido (entidade do Core)."""
    id = serializers.CharField()
    status = serializers.CharField()
    payment_status = serializers.CharField()
    subtotal = serializers.DecimalField(max_digits=10, decimal_places=2)
    shipping_cost = serializers.DecimalField(max_digits=10, decimal_places=2)
    total = serializers.DecimalField(max_digits=10, decimal_places=2)
    shipping_address = serializers.SerializerMethodField()
    shipping_service = serializers.SerializerMethodField()
    tracking_code = serializers.CharField(allow_null=True)
    shipping_status = serializers.CharField(allow_null=True)
    mercado_pago_payment_id = serializers.CharField(allow_null=True)
    melhor_envio_id = serializers.CharField(allow_null=True)
    label_step = serializers.CharField(allow_null=True)
    label_failed_step = serializers.CharField(allow_null=True)
    label_url = serializers.CharField(allow_null=True)
    items = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField(allow_null=True)

    def get_shipping_address(self, obj):
        return obj.shipping_address.to_dict()

    def get_shipping_service(self, obj):
        return obj.shipping_service.to_dict() if obj.shipping_service else None

    def get_items(self, obj):
        return [item.to_dict() for item in obj.itens]


# ====================================================================
# SERIALIZERS DO CHECKOUT EM ETAPAS
# ====================================================================

class EnderecoCheckoutSerializer(serializers.Serializer):
    """Etapa 1: endereço de entrega + itens do carrinho."""
    cep = serializers.CharField(max_length=9)
    street = serializers.CharField(max_length=255)
    number = serializers.CharField(max_length=20)
    complement = serializers.CharField(max_length=100, required=False, allow_blank=True)
    neighborhood = serializers.CharField(max_length=100)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=2)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    document = serializers.CharField(max_length=18)
    items = ItemPedidoSerializer(many=True)

    def to_endereco(self) -> Endereco:
        dados = {chave: valor for chave, valor in self.validated_data.items() if chave != 'items'}
        return Endereco.from_dict(dados)

    def to_itens(self) -> list:
        return [
            ItemPedido(
                product_id=item['product_id'],
                product_name=item['product_name'],
                price=item['price'],
                quantity=item['quantity'],
                product_image=item.get('product_image') or None,
                size=item.get('size') or None,
                color=item.get('color') or None,
            )
            for item in self.validated_data['items']
        ]


class FreteCheckoutSerializer(serializers.Serializer):
    option_id = serializers.CharField()


class PagamentoCheckoutSerializer(serializers.Serializer):
    """Etapa 3: dados do pagador e método. Cartão chega sempre tokenizado."""
    METODOS = [('pix', 'Pix'), ('boleto', 'Boleto'), ('card', 'Cartão de Crédito')]

    method = serializers.ChoiceField(choices=METODOS)
    first_name = serializers.CharField(max_length=100, allow_blank=True)
    last_name = serializers.CharField(max_length=100, allow_blank=True)
    email = serializers.EmailField(allow_blank=True)
    document = serializers.CharField(max_length=18, allow_blank=True)
    card_token = serializers.CharField(required=False, allow_blank=True)
    payment_method_id = serializers.CharField(required=False, allow_blank=True)
    installments = serializers.IntegerField(required=False, min_value=1, default=1)

    def to_pagador(self) -> Pagador:
        dados = self.validated_data
        documento = ''.join(c for c in dados['document'] if c.isdigit())
        return Pagador(
            email=dados['email'],
            first_name=dados['first_name'],
            last_name=dados['last_name'],
            document=documento,
            document_type='CNPJ' if len(documento) > 11 else 'CPF',
        )

    def to_cartao(self):
        dados = self.validated_data
        if dados['method'] != 'card':
            return None
        return {
            'token': dados.get('card_token'),
            'payment_method_id': dados.get('payment_method_id'),
            'installments': dados.get('installments') or 1,
        }
