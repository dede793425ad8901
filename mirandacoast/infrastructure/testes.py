import unittest
from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from django.test import TestCase

# Importamos as classes que queremos testar
from mirandacoast.infrastructure.models import Pedido as PedidoModel, ItemPedido as ItemPedidoModel
from mirandacoast.infrastructure.repositories import PedidoRepositoryDjango
from mirandacoast.infrastructure.gateways import MercadoPagoGateway, MelhorEnvioGateway
from mirandacoast.core.use_cases import GerarEtiquetaUseCase
from mirandacoast.core.config import ConfiguracaoLoja
from mirandacoast.core.entities import (
    Endereco, OpcaoFrete, ItemPedido, Pedido, ItemPagamento, Pagador, SolicitacaoCobrancaDireta,
)
from mirandacoast.core.exceptions import (
    ConfiguracaoAusenteError,
    DadosInvalidosError,
    FreteIndisponivelError,
    PedidoNaoEncontradoError,
    ProvedorIndisponivelError,
    ProvedorRecusouError,
)

CONFIG = ConfiguracaoLoja(mercado_pago_access_token='TEST-TOKEN', melhor_envio_token='ME-TOKEN', timeout=5)

ENDERECO = Endereco(
    cep='88015100', street='Rua das Flores', number='10', neighborhood='Centro',
    city='Florianópolis', state='SC', name='Ana Souza', email='ana@example.com', document='12345678909',
)
PAC = OpcaoFrete(id=1, name='PAC', company='Correios', price=Decimal('20.00'), delivery_time=7)


def resposta(status_code=200, dados=None):
    """Simula um requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = dados
    response.text = ''
    return response


def cobranca(metodo, **campos):
    dados = dict(
        itens=[ItemPagamento(id='p1', title='Vestido Linho', quantity=1, unit_price=Decimal('20.00'))],
        pagador=Pagador(email='ana@example.com', first_name='Ana', last_name='Souza', document='12345678909'),
        external_reference='pedido-1',
        payment_method_id=metodo,
    )
    dados.update(campos)
    return SolicitacaoCobrancaDireta(**dados)


# ====================================================================
# MERCADO PAGO
# ====================================================================

@patch('mirandacoast.infrastructure.gateways.requests.post')
class MercadoPagoGatewayTestCase(unittest.TestCase):

    def setUp(self):
        self.gateway = MercadoPagoGateway(CONFIG)
        self.itens = [
            ItemPagamento(id='p1', title='Vestido Linho', quantity=1, unit_price=Decimal('20.00')),
            ItemPagamento(id='frete', title='Frete', quantity=1, unit_price=Decimal('5.00')),
        ]

    def test_pix_devolve_qr_code(self, post_mock):
        """
        Cenário: Cobrança Pix envia o valor total e devolve os dados do QR code.
        """
        # ARRANGE
        post_mock.return_value = resposta(201, {
            'id': 123,
            'status': 'pending',
            'status_detail': 'pending_waiting_transfer',
            'point_of_interaction': {'transaction_data': {
                'qr_code': '000201', 'qr_code_base64': 'iVBOR', 'ticket_url': 'https://mp.test/pix',
            }},
        })

        # ACT
        resultado = self.gateway.criar_cobranca(
            cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='https://loja.test/wh',
        )

        # ASSERT
        args, kwargs = post_mock.call_args
        self.assertEqual(args[0], 'https://api.mercadopago.com/v1/payments')
        self.assertEqual(kwargs['timeout'], 5)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer TEST-TOKEN')
        self.assertIn('X-Idempotency-Key', kwargs['headers'])
        payload = kwargs['json']
        self.assertEqual(payload['transaction_amount'], 25.0)
        self.assertEqual(payload['payment_method_id'], 'pix')
        self.assertEqual(payload['payer']['identification'], {'type': 'CPF', 'number': '12345678909'})
        self.assertEqual(payload['notification_url'], 'https://loja.test/wh')
        self.assertNotIn('token', payload)

        self.assertEqual(resultado.id, '123')
        self.assertEqual(resultado.qr_code, '000201')
        self.assertEqual(resultado.ticket_url, 'https://mp.test/pix')

    def test_chave_de_idempotencia_nova_a_cada_criacao(self, post_mock):
        post_mock.return_value = resposta(201, {'id': 1, 'status': 'pending'})

        self.gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')
        self.gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')

        chaves = {chamada.kwargs['headers']['X-Idempotency-Key'] for chamada in post_mock.call_args_list}
        self.assertEqual(len(chaves), 2)

    def test_boleto_envia_endereco_e_banco_emissor(self, post_mock):
        post_mock.return_value = resposta(201, {
            'id': 124, 'status': 'pending',
            'transaction_details': {'external_resource_url': 'https://mp.test/boleto.pdf'},
        })
        solicitacao = cobranca('boleto')
        solicitacao.pagador.address = {
            'zip_code': '88015-100', 'street_name': 'Rua das Flores', 'street_number': 10,
            'city': 'Florianópolis', 'federal_unit': 'SC',
        }

        resultado = self.gateway.criar_cobranca(solicitacao, itens=self.itens, valor=Decimal('25.00'), notification_url='x')

        payload = post_mock.call_args.kwargs['json']
        self.assertEqual(payload['payment_method_id'], 'bolbradesco')
        self.assertEqual(payload['payer']['address']['zip_code'], '88015100')
        self.assertEqual(payload['payer']['address']['street_number'], '10')
        self.assertEqual(resultado.ticket_url, 'https://mp.test/boleto.pdf')

    def test_cartao_envia_token_e_parcelas(self, post_mock):
        post_mock.return_value = resposta(201, {'id': 125, 'status': 'approved'})

        self.gateway.criar_cobranca(
            cobranca('visa', token='tok_1', installments=3), itens=self.itens, valor=Decimal('25.00'), notification_url='x',
        )

        payload = post_mock.call_args.kwargs['json']
        self.assertEqual(payload['token'], 'tok_1')
        self.assertEqual(payload['installments'], 3)

    def test_recusa_4xx(self, post_mock):
        """
        Cenário: 4xx do processador vira ProvedorRecusouError com status e detalhes.
        """
        post_mock.return_value = resposta(400, {'message': 'invalid payer email', 'status': 400})

        with self.assertRaises(ProvedorRecusouError) as contexto:
            self.gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')

        self.assertEqual(contexto.exception.status_code, 400)
        self.assertEqual(contexto.exception.message, 'invalid payer email')
        self.assertEqual(contexto.exception.detalhes['status'], 400)

    def test_5xx_e_falha_de_rede(self, post_mock):
        post_mock.return_value = resposta(503, {'message': 'unavailable'})
        with self.assertRaises(ProvedorIndisponivelError):
            self.gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')

        post_mock.side_effect = requests.exceptions.ConnectionError('sem rede')
        with self.assertRaises(ProvedorIndisponivelError):
            self.gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')

    def test_sem_token_nao_chama_api(self, post_mock):
        gateway = MercadoPagoGateway(ConfiguracaoLoja())

        with self.assertRaises(ConfiguracaoAusenteError):
            gateway.criar_cobranca(cobranca('pix'), itens=self.itens, valor=Decimal('25.00'), notification_url='x')
        post_mock.assert_not_called()

    @patch('mirandacoast.infrastructure.gateways.requests.get')
    def test_consultar_pagamento(self, get_mock, post_mock):
        get_mock.return_value = resposta(200, {'id': 555, 'status': 'approved', 'external_reference': 'pedido-1'})

        transacao = self.gateway.consultar_pagamento('555')

        self.assertEqual(get_mock.call_args[0][0], 'https://api.mercadopago.com/v1/payments/555')
        self.assertEqual(transacao.referencia_externa, 'pedido-1')
        self.assertEqual(transacao.status, 'approved')
        post_mock.assert_not_called()


# ====================================================================
# MELHOR ENVIO
# ====================================================================

@patch('mirandacoast.infrastructure.gateways.requests.post')
class MelhorEnvioGatewayTestCase(unittest.TestCase):

    def setUp(self):
        self.gateway = MelhorEnvioGateway(CONFIG)
        self.pacote = {'id': '1', 'width': 20, 'height': 5, 'length': 30, 'weight': 0.3, 'insurance_value': 100, 'quantity': 1}

    def test_calcular(self, post_mock):
        post_mock.return_value = resposta(200, [{'id': 1, 'name': 'PAC', 'price': '25.90'}])

        opcoes = self.gateway.calcular('88348225', '88015100', self.pacote)

        args, kwargs = post_mock.call_args
        self.assertEqual(args[0], 'https://www.melhorenvio.com.br/api/v2/me/shipment/calculate')
        self.assertEqual(kwargs['json']['products'], [self.pacote])
        self.assertEqual(kwargs['headers']['User-Agent'], CONFIG.user_agent)
        self.assertEqual(opcoes[0]['name'], 'PAC')

    def test_calcular_falhas_viram_frete_indisponivel(self, post_mock):
        for falha in (resposta(500, {}), resposta(422, {'message': 'CEP inválido'}), resposta(200, {'erro': True})):
            post_mock.return_value = falha
            with self.assertRaises(FreteIndisponivelError):
                self.gateway.calcular('88348225', '88015100', self.pacote)

    def test_carrinho_devolve_id(self, post_mock):
        post_mock.return_value = resposta(201, {'id': 'me-1', 'status': 'pending'})

        self.assertEqual(self.gateway.adicionar_ao_carrinho({'service': 1}), 'me-1')

    def test_carrinho_sem_id(self, post_mock):
        post_mock.return_value = resposta(201, {'status': 'pending'})

        with self.assertRaises(ProvedorRecusouError):
            self.gateway.adicionar_ao_carrinho({'service': 1})

    def test_imprimir_e_rastrear(self, post_mock):
        post_mock.side_effect = [
            resposta(200, {'url': 'https://melhorenvio.test/etiqueta.pdf'}),
            resposta(200, {'me-1': {'tracking': 'BR123', 'status': 'posted'}}),
        ]

        self.assertEqual(self.gateway.imprimir('me-1'), 'https://melhorenvio.test/etiqueta.pdf')
        self.assertEqual(self.gateway.rastrear('me-1'), 'BR123')
        self.assertEqual(post_mock.call_args_list[0].kwargs['json'], {'mode': 'public', 'orders': ['me-1']})

    def test_rastreio_ausente(self, post_mock):
        post_mock.return_value = resposta(200, {})

        self.assertIsNone(self.gateway.rastrear('me-1'))


# ====================================================================
# REPOSITÓRIO (banco de teste do Django)
# ====================================================================

class PedidoRepositoryTestCase(TestCase):

    def setUp(self):
        """
        Configura o repositório e grava um pedido real com um item.
        """
        self.repository = PedidoRepositoryDjango()
        self.pedido = self.repository.criar(Pedido(
            subtotal=Decimal('100.00'),
            shipping_cost=Decimal('20.00'),
            total=Decimal('120.00'),
            shipping_address=ENDERECO,
            shipping_service=PAC,
        ))
        self.item = ItemPedido(product_id='p1', product_name='Vestido Linho', price=Decimal('50.00'), quantity=2, size='M')

    def test_buscar_por_id_com_sucesso(self):
        """
        Cenário: O pedido volta com snapshots e itens intactos.
        """
        # ARRANGE
        self.repository.adicionar_itens(self.pedido.id, [self.item])

        # ACT
        pedido = self.repository.buscar_por_id(self.pedido.id)

        # ASSERT
        self.assertEqual(pedido.total, Decimal('120.00'))
        self.assertEqual(pedido.shipping_address, ENDERECO)
        self.assertEqual(pedido.shipping_service.id, 1)
        self.assertEqual(pedido.shipping_service.price, Decimal('20.00'))
        self.assertFalse(pedido.shipping_service.pickup)
        self.assertEqual(len(pedido.itens), 1)
        self.assertEqual(pedido.itens[0].size, 'M')
        self.assertEqual((pedido.status, pedido.payment_status), ('pending', 'pending'))

    def test_buscar_por_id_nao_encontrado(self):
        """
        Cenário: ids inexistentes ou malformados retornam None.
        """
        self.assertIsNone(self.repository.buscar_por_id('9b2e1c6e-3f1a-4c55-9a57-2f0a4d1c1111'))
        self.assertIsNone(self.repository.buscar_por_id('id-nao-existente'))

    def test_itens_precisam_somar_o_subtotal(self):
        with self.assertRaises(DadosInvalidosError):
            self.repository.adicionar_itens(self.pedido.id, [ItemPedido(
                product_id='p1', product_name='Vestido Linho', price=Decimal('50.00'), quantity=1,
            )])
        self.assertEqual(self.repository.contar_itens(self.pedido.id), 0)

    def test_atualizar_campos_mutaveis(self):
        pedido = self.repository.atualizar(
            self.pedido.id, payment_status='paid', status='confirmed', mercado_pago_payment_id='555',
        )

        self.assertEqual((pedido.payment_status, pedido.status), ('paid', 'confirmed'))
        model = PedidoModel.objects.get(pk=self.pedido.id)
        self.assertEqual(model.mercado_pago_payment_id, '555')

    def test_atualizar_rejeita_campos_imutaveis_e_valores_invalidos(self):
        for campos in ({'total': Decimal('1.00')}, {'status': 'perdido'}, {'payment_status': 'ok'}, {'label_step': 'x'}):
            with self.assertRaises(DadosInvalidosError):
                self.repository.atualizar(self.pedido.id, **campos)
        self.assertEqual(PedidoModel.objects.get(pk=self.pedido.id).total, Decimal('120.00'))

    def test_atualizar_pedido_inexistente(self):
        with self.assertRaises(PedidoNaoEncontradoError):
            self.repository.atualizar('9b2e1c6e-3f1a-4c55-9a57-2f0a4d1c1111', status='confirmed')

    def test_retirada_na_loja_mantem_snapshot(self):
        retirada = OpcaoFrete(
            id='retirada', name='Retirada na loja', company='Miranda Coast', price=Decimal('0.00'),
            pickup=True, address='Rua da Loja, 100',
        )
        criado = self.repository.criar(Pedido(
            subtotal=Decimal('100.00'), shipping_cost=Decimal('0.00'), total=Decimal('100.00'),
            shipping_address=ENDERECO, shipping_service=retirada,
        ))

        pedido = self.repository.buscar_por_id(criado.id)

        self.assertTrue(pedido.shipping_service.pickup)
        self.assertEqual(pedido.shipping_service.address, 'Rua da Loja, 100')
        self.assertEqual(ItemPedidoModel.objects.filter(pedido_id=criado.id).count(), 0)

    def test_snapshot_antigo_resolve_documento_do_destinatario(self):
        """
        Cenário: Pedido gravado com o documento em 'customer_document' (esquema
        antigo). A leitura normaliza o snapshot e a etiqueta encontra o CPF.
        """
        # ARRANGE
        snapshot = dict(ENDERECO.to_dict(), document='', customer_document='123.456.789-09')
        PedidoModel.objects.filter(pk=self.pedido.id).update(shipping_address=snapshot)

        # ACT
        pedido = self.repository.buscar_por_id(self.pedido.id)

        # ASSERT
        self.assertEqual(pedido.shipping_address.document, '12345678909')
        self.assertEqual(GerarEtiquetaUseCase.resolver_documento(pedido), '12345678909')

    def test_atualizar_se_decide_sobre_a_linha_atual(self):
        """
        Cenário: Outra gravação marcou o pedido como pago antes da trava; a
        função de decisão recebe o estado gravado e não rebaixa o pagamento.
        """
        # ARRANGE
        PedidoModel.objects.filter(pk=self.pedido.id).update(payment_status='paid', status='confirmed')
        vistos = []

        def calcular(atual):
            vistos.append(atual.payment_status)
            return {} if atual.payment_status == 'paid' else {'payment_status': 'approved'}

        # ACT
        pedido = self.repository.atualizar_se(self.pedido.id, calcular)

        # ASSERT
        self.assertEqual(vistos, ['paid'])
        self.assertEqual(pedido.payment_status, 'paid')
        self.assertEqual(PedidoModel.objects.get(pk=self.pedido.id).payment_status, 'paid')

    def test_atualizar_se_grava_e_valida_os_campos(self):
        pedido = self.repository.atualizar_se(self.pedido.id, lambda atual: {'payment_status': 'approved'})

        self.assertEqual(pedido.payment_status, 'approved')
        with self.assertRaises(DadosInvalidosError):
            self.repository.atualizar_se(self.pedido.id, lambda atual: {'total': Decimal('1.00')})
        self.assertIsNone(self.repository.atualizar_se('9b2e1c6e-3f1a-4c55-9a57-2f0a4d1c1111', lambda atual: {}))
