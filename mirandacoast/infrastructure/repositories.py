"""
Camada de Infraestrutura: Implementação do Repositório de Pedidos.

Traduz as operações abstratas definidas nas Portas da Core em chamadas
concretas ao Django ORM.
"""
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from django.apps import apps
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from mirandacoast.core import status as ciclo
from mirandacoast.core.entities import Pedido, ItemPedido, EtapaEtiqueta
from mirandacoast.core.ports import IPedidoRepository
from mirandacoast.core.exceptions import DadosInvalidosError, PedidoNaoEncontradoError

from .mappers import PedidoMapper, ItemPedidoMapper

logger = logging.getLogger(__name__)


# Helper para Lazy Loading
def get_model(app_label, model_name):
    """Busca o modelo Django de forma segura (Lazy Loading)."""
    return apps.get_model(app_label, model_name)


class PedidoRepositoryDjango(IPedidoRepository):
    """
    Implementação do PedidoRepository usando o Django ORM.
    Valores e snapshots são imutáveis: `atualizar` aceita apenas os campos abaixo.
    """

    CAMPOS_MUTAVEIS = frozenset({
        'status', 'payment_status', 'tracking_code', 'shipping_status',
        'mercado_pago_payment_id', 'melhor_envio_id', 'label_step',
        'label_failed_step', 'label_url',
    })

    # Propriedades para carregar modelos de forma LAZY
    @property
    def PedidoModel(self):
        return get_model('infrastructure', 'Pedido')

    @property
    def ItemPedidoModel(self):
        return get_model('infrastructure', 'ItemPedido')

    def criar(self, pedido: Pedido) -> Pedido:
        model = PedidoMapper.to_model(pedido)
        model.save(force_insert=True)
        return PedidoMapper.to_entity(model, itens=[])

    @transaction.atomic
    def adicionar_itens(self, pedido_id: str, itens: List[ItemPedido]) -> List[ItemPedido]:
        pedido = self.PedidoModel.objects.select_for_update().filter(pk=pedido_id).first()
        if pedido is None:
            raise PedidoNaoEncontradoError(f"Pedido {pedido_id} não encontrado.")

        subtotal = sum((item.subtotal for item in itens), Decimal('0.00'))
        if subtotal != pedido.subtotal:
            raise DadosInvalidosError(
                f"Soma dos itens ({subtotal}) difere do subtotal do pedido ({pedido.subtotal})."
            )

        models_itens = [ItemPedidoMapper.to_model(item, pedido.pk) for item in itens]
        criados = self.ItemPedidoModel.objects.bulk_create(models_itens)
        return [ItemPedidoMapper.to_entity(model) for model in criados]

    def contar_itens(self, pedido_id: str) -> int:
        return self.ItemPedidoModel.objects.filter(pedido_id=pedido_id).count()

    def buscar_por_id(self, pedido_id: str) -> Optional[Pedido]:
        try:
            model = self.PedidoModel.objects.prefetch_related('itens').get(pk=pedido_id)
        except (self.PedidoModel.DoesNotExist, DjangoValidationError, ValueError):
            # ids que não são UUID válidos simplesmente não existem
            return None
        return PedidoMapper.to_entity(model)

    @transaction.atomic
    def atualizar(self, pedido_id: str, **campos) -> Pedido:
        campos = self._validar_campos(campos)
        model = self._travar(pedido_id)
        if model is None:
            raise PedidoNaoEncontradoError(f"Pedido {pedido_id} não encontrado.")
        return self._gravar(model, campos)

    @transaction.atomic
    def atualizar_se(self, pedido_id: str, calcular: Callable[[Pedido], Dict[str, Any]]) -> Optional[Pedido]:
        model = self._travar(pedido_id)
        if model is None:
            return None
        atual = PedidoMapper.to_entity(model)
        campos = calcular(atual)
        if not campos:
            return atual
        return self._gravar(model, self._validar_campos(campos))

    def _travar(self, pedido_id: str):
        try:
            return self.PedidoModel.objects.select_for_update().get(pk=pedido_id)
        except (self.PedidoModel.DoesNotExist, DjangoValidationError, ValueError):
            return None

    def _validar_campos(self, campos: Dict[str, Any]) -> Dict[str, Any]:
        invalidos = set(campos) - self.CAMPOS_MUTAVEIS
        if invalidos:
            raise DadosInvalidosError(
                f"Campos imutáveis não podem ser atualizados: {', '.join(sorted(invalidos))}."
            )
        if 'status' in campos and campos['status'] not in ciclo.STATUS_VALIDOS:
            raise DadosInvalidosError(f"Status inválido: {campos['status']!r}.")
        if 'payment_status' in campos and campos['payment_status'] not in ciclo.PAGAMENTO_VALIDOS:
            raise DadosInvalidosError(f"Status de pagamento inválido: {campos['payment_status']!r}.")
        if campos.get('label_step') is not None:
            try:
                campos['label_step'] = EtapaEtiqueta(campos['label_step']).value
            except ValueError:
                raise DadosInvalidosError(f"Etapa de etiqueta inválida: {campos['label_step']!r}.")
        return campos

    def _gravar(self, model, campos: Dict[str, Any]) -> Pedido:
        for campo, valor in campos.items():
            setattr(model, campo, valor)
        model.save(update_fields=list(campos) + ['updated_at'])
        logger.debug("Pedido %s atualizado: %s", model.pk, campos)
        return PedidoMapper.to_entity(model)
