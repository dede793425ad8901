from decimal import Decimal
from unittest.mock import Mock, patch

from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from mirandacoast.core.entities import (
    Endereco, OpcaoFrete, ItemPedido, Pedido, ResultadoPagamento, TransacaoPagamento,
)
from mirandacoast.core.exceptions import FreteIndisponivelError, ProvedorIndisponivelError
from mirandacoast.infrastructure.models import Pedido as PedidoModel, ItemPedido as ItemPedidoModel
from mirandacoast.infrastructure.repositories import PedidoRepositoryDjango

Usuario = get_user_model()

ENDERECO = Endereco(
    cep='88015100', street='Rua das Flores', number='10', neighborhood='Centro',
    city='Florianópolis', state='SC', name='Ana Souza', email='ana@example.com', document='12345678909',
)
PAC = OpcaoFrete(id=1, name='PAC', company='Correios', price=Decimal('20.00'))

COTACAO_MELHOR_ENVIO = [
    {'id': 1, 'name': 'PAC', 'price': '20.00', 'company': {'name': 'Correios'}, 'delivery_time': 7},
    {'id': 2, 'name': 'SEDEX', 'price': '35.00', 'company': {'name': 'Correios'}, 'delivery_time': 2},
    {'id': 3, 'name': '.Package', 'price': '12.00', 'company': {'name': 'Jadlog'}},
]


def criar_pedido(**campos) -> Pedido:
    """Grava um pedido com um item no banco de teste."""
    repo = PedidoRepositoryDjango()
    pedido = repo.criar(Pedido(
        subtotal=Decimal('100.00'), shipping_cost=Decimal('20.00'), total=Decimal('120.00'),
        shipping_address=ENDERECO, shipping_service=PAC, usuario_id=campos.pop('usuario_id', None),
    ))
    repo.adicionar_itens(pedido.id, [
        ItemPedido(product_id='p1', product_name='Vestido Linho', price=Decimal('50.00'), quantity=2),
    ])
    if campos:
        repo.atualizar(pedido.id, **campos)
    return pedido


# ====================================================================
# WEBHOOKS
# ====================================================================

class WebhookMercadoPagoTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('webhook_mercadopago')
        self.pedido = criar_pedido()

    @patch('mirandacoast.core.dependency_injection.get_gateway_pagamento')
    def test_pagamento_aprovado_confirma_pedido(self, gateway_factory):
        """
        Cenário: Notificação de pagamento aprovado (sem autenticação) confirma o pedido.
        """
        # ARRANGE
        gateway = gateway_factory.return_value
        gateway.consultar_pagamento.return_value = TransacaoPagamento(
            referencia_externa=self.pedido.id, pagamento_id='555', status='approved',
        )

        # ACT
        response = self.client.post(self.url, {'type': 'payment', 'data': {'id': '555'}}, format='json')

        # ASSERT
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json(), {})
        model = PedidoModel.objects.get(pk=self.pedido.id)
        self.assertEqual((model.payment_status, model.status), ('paid', 'confirmed'))
        self.assertEqual(model.mercado_pago_payment_id, '555')

    @patch('mirandacoast.core.dependency_injection.get_gateway_pagamento')
    def test_notificacao_por_query_string(self, gateway_factory):
        gateway = gateway_factory.return_value
        gateway.consultar_pagamento.return_value = TransacaoPagamento(
            referencia_externa=self.pedido.id, pagamento_id='556', status='rejected',
        )

        response = self.client.get(self.url, {'type': 'payment', 'data.id': '556'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(PedidoModel.objects.get(pk=self.pedido.id).payment_status, 'failed')

    @patch('mirandacoast.core.dependency_injection.get_processar_webhook_pagamento_use_case')
    def test_erro_interno_ainda_responde_200(self, use_case_factory):
        use_case_factory.return_value.executar.side_effect = RuntimeError('banco fora do ar')

        response = self.client.post(self.url, {'data': {'id': '1'}}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_corpo_desconhecido(self):
        response = self.client.post(self.url, 'nada', content_type='text/plain')

        self.assertEqual(response.status_code, status.HTTP_200_OK)


class WebhookMelhorEnvioTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('webhook_melhorenvio')
        self.pedido = criar_pedido(tracking_code='BR1', status='shipped')

    def test_sondagem_de_conectividade(self):
        self.assertEqual(self.client.get(self.url).json(), {'success': True})
        self.assertEqual(self.client.post(self.url, {}, format='json').json(), {'success': True})

    def test_atualiza_status_sem_apagar_rastreio(self):
        evento = {'event': 'order.posted', 'data': {'status': 'posted', 'tags': [{'tag': 'x'}, {'tag': self.pedido.id}]}}

        response = self.client.post(self.url, evento, format='json')

        self.assertEqual(response.json(), {'success': True})
        model = PedidoModel.objects.get(pk=self.pedido.id)
        self.assertEqual(model.tracking_code, 'BR1')
        self.assertEqual(model.shipping_status, 'posted')


# ====================================================================
# FRETE E PAGAMENTO
# ====================================================================

@patch('mirandacoast.core.dependency_injection.get_gateway_frete')
class CotarFreteViewTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('cotar_frete')

    def test_cotacao_publica(self, gateway_factory):
        gateway_factory.return_value.calcular.return_value = COTACAO_MELHOR_ENVIO

        response = self.client.post(self.url, {
            'to_postal_code': '88015-100',
            'products': [{'weight': '0.3', 'quantity': 3}],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        opcoes = response.json()['options']
        self.assertEqual([opcao['id'] for opcao in opcoes], ['retirada', 1, 2])
        self.assertEqual(opcoes[0]['price'], 0.0)
        self.assertTrue(opcoes[0]['pickup'])
        self.assertEqual(gateway_factory.return_value.calcular.call_args[0][2]['weight'], 0.9)

    def test_cep_invalido(self, gateway_factory):
        response = self.client.post(self.url, {'to_postal_code': '123'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        gateway_factory.return_value.calcular.assert_not_called()

    def test_provedor_indisponivel(self, gateway_factory):
        gateway_factory.return_value.calcular.side_effect = FreteIndisponivelError()

        response = self.client.post(self.url, {'to_postal_code': '88015100'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertIn('error', response.json())


@patch('mirandacoast.core.dependency_injection.get_gateway_pagamento')
class CriarPagamentoViewTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('criar_pagamento')
        self.usuario = Usuario.objects.create_user(username='ana', email='ana@example.com', password='senha-forte-123')
        self.pedido = criar_pedido(usuario_id=self.usuario.id)
        self.corpo = {
            'items': [{'id': 'p1', 'title': 'Vestido Linho', 'quantity': 2, 'unit_price': 50}],
            'payer': {'email': 'ana@example.com', 'first_name': 'Ana', 'last_name': 'Souza', 'document': '12345678909'},
            'external_reference': self.pedido.id,
            'payment_method_id': 'pix',
            'shipping_cost': '20.00',
        }

    def test_exige_autenticacao(self, gateway_factory):
        response = self.client.post(self.url, self.corpo, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_pix(self, gateway_factory):
        """
        Cenário: Cobrança Pix devolve o QR code e o pedido recebe o id do pagamento.
        """
        gateway_factory.return_value.criar_cobranca.return_value = ResultadoPagamento(
            id='321', status='pending', qr_code='000201', qr_code_base64='iVBOR',
        )
        self.client.force_authenticate(self.usuario)

        response = self.client.post(self.url, self.corpo, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['qr_code'], '000201')
        self.assertEqual(gateway_factory.return_value.criar_cobranca.call_args.kwargs['valor'], Decimal('120.00'))
        self.assertEqual(PedidoModel.objects.get(pk=self.pedido.id).mercado_pago_payment_id, '321')

    def test_campos_obrigatorios(self, gateway_factory):
        self.client.force_authenticate(self.usuario)
        del self.corpo['items']

        response = self.client.post(self.url, self.corpo, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        gateway_factory.return_value.criar_cobranca.assert_not_called()

    def test_pagamento_rejeitado(self, gateway_factory):
        gateway_factory.return_value.criar_cobranca.return_value = ResultadoPagamento(
            id='322', status='rejected', status_detail='cc_rejected_bad_filled_security_code',
        )
        self.client.force_authenticate(self.usuario)
        self.corpo.update(payment_method_id='visa', token='tok_1')

        response = self.client.post(self.url, self.corpo, format='json')

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(response.json()['status_detail'], 'cc_rejected_bad_filled_security_code')
        self.assertEqual(PedidoModel.objects.get(pk=self.pedido.id).payment_status, 'rejected')


# ====================================================================
# ETIQUETAS E PEDIDOS
# ====================================================================

class EtiquetaViewTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('gerar_etiqueta')
        self.admin = Usuario.objects.create_user(username='admin', password='senha-forte-123', is_staff=True)
        self.cliente = Usuario.objects.create_user(username='cliente', password='senha-forte-123')
        self.pedido = criar_pedido(payment_status='paid', status='confirmed')

    def test_somente_admin(self):
        self.client.force_authenticate(self.cliente)

        response = self.client.post(self.url, {'order_id': self.pedido.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    @patch('mirandacoast.core.dependency_injection.get_gateway_frete')
    def test_etiqueta_gerada(self, gateway_factory):
        gateway = gateway_factory.return_value
        gateway.adicionar_ao_carrinho.return_value = 'me-1'
        gateway.imprimir.return_value = 'https://melhorenvio.test/etiqueta.pdf'
        gateway.rastrear.return_value = 'BR123'
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url, {'order_id': self.pedido.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['tracking_code'], 'BR123')
        model = PedidoModel.objects.get(pk=self.pedido.id)
        self.assertEqual((model.status, model.tracking_code), ('shipped', 'BR123'))

    @patch('mirandacoast.core.dependency_injection.get_gateway_frete')
    def test_falha_depois_da_compra(self, gateway_factory):
        """
        Cenário: A geração falha depois do pagamento da etiqueta: 502 com o id
        do carrinho e a etapa que falhou.
        """
        gateway = gateway_factory.return_value
        gateway.adicionar_ao_carrinho.return_value = 'me-1'
        gateway.gerar.side_effect = ProvedorIndisponivelError()
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url, {'order_id': self.pedido.id, 'service_id': '2'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.json()['melhor_envio_id'], 'me-1')
        self.assertEqual(response.json()['step'], 'generate')
        self.assertEqual(gateway.adicionar_ao_carrinho.call_args[0][0]['service'], 2)

    def test_pagamento_pendente(self):
        pedido = criar_pedido()
        self.client.force_authenticate(self.admin)

        response = self.client.post(self.url, {'order_id': pedido.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class PedidoViewTestCase(APITestCase):

    def setUp(self):
        self.dono = Usuario.objects.create_user(username='dona', password='senha-forte-123')
        self.outro = Usuario.objects.create_user(username='outro', password='senha-forte-123')
        self.admin = Usuario.objects.create_user(username='admin', password='senha-forte-123', is_staff=True)
        self.pedido = criar_pedido(usuario_id=self.dono.id)
        self.url = reverse('detalhe_pedido', kwargs={'pedido_id': self.pedido.id})
        self.url_status = reverse('atualizar_status_pedido', kwargs={'pedido_id': self.pedido.id})

    def test_dono_ve_o_pedido(self):
        self.client.force_authenticate(self.dono)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        dados = response.json()
        self.assertEqual(dados['id'], self.pedido.id)
        self.assertEqual(dados['shipping_address']['city'], 'Florianópolis')
        self.assertEqual(len(dados['items']), 1)

    def test_outro_cliente_recebe_404(self):
        self.client.force_authenticate(self.outro)

        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_avanca_status(self):
        self.client.force_authenticate(self.admin)

        response = self.client.patch(self.url_status, {'status': 'confirmed'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['status'], 'confirmed')

    def test_transicao_invalida(self):
        PedidoRepositoryDjango().atualizar(self.pedido.id, status='delivered')
        self.client.force_authenticate(self.admin)

        response = self.client.patch(self.url_status, {'status': 'cancelled'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_cliente_nao_altera_status(self):
        self.client.force_authenticate(self.dono)

        response = self.client.patch(self.url_status, {'status': 'cancelled'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


# ====================================================================
# CHECKOUT EM ETAPAS
# ====================================================================

@patch('mirandacoast.core.dependency_injection.get_gateway_pagamento')
@patch('mirandacoast.core.dependency_injection.get_gateway_frete')
class CheckoutViewTestCase(APITestCase):

    def setUp(self):
        self.usuario = Usuario.objects.create_user(username='ana', password='senha-forte-123')
        self.client.force_login(self.usuario)
        self.endereco = {
            'cep': '88015-100', 'street': 'Rua das Flores', 'number': '10', 'neighborhood': 'Centro',
            'city': 'Florianópolis', 'state': 'SC', 'name': 'Ana Souza', 'email': 'ana@example.com',
            'document': '123.456.789-09',
            'items': [{'product_id': 'p1', 'product_name': 'Vestido Linho', 'price': '50.00', 'quantity': 2, 'size': 'M'}],
        }
        self.pagador = {
            'method': 'pix', 'first_name': 'Ana', 'last_name': 'Souza',
            'email': 'ana@example.com', 'document': '123.456.789-09',
        }

    def _ate_pagamento(self, gateway_frete):
        gateway_frete.return_value.calcular.return_value = COTACAO_MELHOR_ENVIO
        response = self.client.post(reverse('checkout_endereco'), self.endereco, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['etapa'], 'frete')
        response = self.client.post(reverse('checkout_frete'), {'option_id': '1'}, format='json')
        self.assertEqual(response.json()['etapa'], 'pagamento')

    def test_fluxo_completo_pix(self, gateway_frete, gateway_pagamento):
        """
        Cenário: Endereço, frete e Pix criam um pedido com item e limpam a sessão.
        """
        # ARRANGE
        self._ate_pagamento(gateway_frete)
        gateway_pagamento.return_value.criar_cobranca.return_value = ResultadoPagamento(
            id='321', status='pending', qr_code='000201',
        )

        # ACT
        response = self.client.post(reverse('checkout_pagamento'), self.pagador, format='json')

        # ASSERT
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        dados = response.json()
        self.assertEqual(dados['payment']['qr_code'], '000201')
        model = PedidoModel.objects.get(pk=dados['order_id'])
        self.assertEqual(model.usuario_id, self.usuario.id)
        self.assertEqual(model.total, Decimal('120.00'))
        self.assertEqual(model.mercado_pago_payment_id, '321')
        self.assertEqual(ItemPedidoModel.objects.filter(pedido=model).count(), 1)
        self.assertEqual(self.client.get(reverse('checkout')).json()['etapa'], 'endereco')

    def test_nova_tentativa_usa_o_mesmo_pedido(self, gateway_frete, gateway_pagamento):
        self._ate_pagamento(gateway_frete)
        gateway_pagamento.return_value.criar_cobranca.side_effect = [
            ProvedorIndisponivelError(),
            ResultadoPagamento(id='322', status='pending'),
        ]

        primeira = self.client.post(reverse('checkout_pagamento'), self.pagador, format='json')
        segunda = self.client.post(reverse('checkout_pagamento'), self.pagador, format='json')

        self.assertEqual(primeira.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(segunda.status_code, status.HTTP_201_CREATED)
        self.assertEqual(PedidoModel.objects.count(), 1)
        self.assertEqual(str(PedidoModel.objects.get().pk), segunda.json()['order_id'])

    def test_voltar_para_o_frete(self, gateway_frete, gateway_pagamento):
        self._ate_pagamento(gateway_frete)

        response = self.client.post(reverse('checkout_voltar'))

        self.assertEqual(response.json()['etapa'], 'frete')

    def test_pagamento_antes_do_endereco(self, gateway_frete, gateway_pagamento):
        response = self.client.post(reverse('checkout_pagamento'), self.pagador, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(PedidoModel.objects.count(), 0)
