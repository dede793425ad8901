# mirandacoast/core/testes.py

import copy
import unittest
from io import StringIO
from unittest.mock import Mock, patch
from decimal import Decimal

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db.utils import OperationalError

from mirandacoast.core import status as ciclo
from mirandacoast.core.checkout import CheckoutUseCase, SessaoCheckout, ETAPA_ENDERECO, ETAPA_FRETE, ETAPA_PAGAMENTO
from mirandacoast.core.config import ConfiguracaoLoja, Remetente
from mirandacoast.core.entities import (
    Endereco, OpcaoFrete, ItemPedido, Pedido, ItemPagamento, Pagador,
    SolicitacaoPreferencia, SolicitacaoCobrancaDireta, ResultadoPagamento, TransacaoPagamento,
)
from mirandacoast.core.exceptions import (
    ConfiguracaoAusenteError,
    DadosInvalidosError,
    EtiquetaNaoRecuperavelError,
    FreteIndisponivelError,
    ItensPedidoError,
    PagamentoRecusadoError,
    ProvedorIndisponivelError,
    ProvedorRecusouError,
    StatusInvalidoError,
)
from mirandacoast.core.use_cases import (
    CotarFreteUseCase,
    CriarPedidoUseCase,
    CriarPagamentoUseCase,
    ProcessarWebhookPagamentoUseCase,
    GerarEtiquetaUseCase,
    ProcessarWebhookFreteUseCase,
    AtualizarStatusPedidoUseCase,
    montar_solicitacao,
)


# ====================================================================
# APOIO: repositório em memória e objetos de exemplo
# ====================================================================

class RepositorioEmMemoria:
    """Implementa IPedidoRepository guardando cópias, como um banco faria."""

    def __init__(self):
        self.pedidos = {}
        self.itens = {}
        self.escritas = []
        self.falhar_itens = False
        self.antes_de_travar = None

    def criar(self, pedido):
        self.pedidos[pedido.id] = copy.deepcopy(pedido)
        return pedido

    def adicionar_itens(self, pedido_id, itens):
        if self.falhar_itens:
            raise RuntimeError("conexão perdida")
        self.itens[pedido_id] = list(itens)
        self.pedidos[pedido_id].itens = list(itens)
        return list(itens)

    def contar_itens(self, pedido_id):
        return len(self.itens.get(pedido_id, []))

    def buscar_por_id(self, pedido_id):
        pedido = self.pedidos.get(pedido_id)
        return copy.deepcopy(pedido) if pedido else None

    def atualizar(self, pedido_id, **campos):
        self.escritas.append(campos)
        pedido = self.pedidos[pedido_id]
        for campo, valor in campos.items():
            setattr(pedido, campo, valor)
        return copy.deepcopy(pedido)

    def atualizar_se(self, pedido_id, calcular):
        # Simula outra transação que obteve a trava primeiro.
        concorrente, self.antes_de_travar = self.antes_de_travar, None
        if concorrente:
            concorrente()
        if pedido_id not in self.pedidos:
            return None
        campos = calcular(copy.deepcopy(self.pedidos[pedido_id]))
        if not campos:
            return copy.deepcopy(self.pedidos[pedido_id])
        return self.atualizar(pedido_id, **campos)


CONFIG = ConfiguracaoLoja(
    mercado_pago_access_token='TEST-TOKEN',
    melhor_envio_token='ME-TOKEN',
    public_site_url='https://loja.test',
    endereco_retirada='Rua da Loja, 100 - Itapema/SC',
    remetente=Remetente(name='Miranda Coast', postal_code='88348-225'),
)

ENDERECO = Endereco(
    cep='88015100', street='Rua das Flores', number='10', neighborhood='Centro',
    city='Florianópolis', state='SC', name='Ana Souza', email='ana@example.com',
    phone='48999990000', document='12345678909',
)

PAC = OpcaoFrete(id=1, name='PAC', company='Correios', price=Decimal('20.00'), delivery_time=7)
SEDEX = OpcaoFrete(id=2, name='SEDEX', company='Correios', price=Decimal('35.00'), delivery_time=2)
RETIRADA = OpcaoFrete(
    id='retirada', name='Retirada na loja', company='Miranda Coast', price=Decimal('0.00'),
    delivery_time=0, pickup=True, address=CONFIG.endereco_retirada,
)


def novo_item(**campos):
    dados = dict(product_id='p1', product_name='Vestido Linho', price=Decimal('50.00'), quantity=2, size='M', color='Areia')
    dados.update(campos)
    return ItemPedido(**dados)


def novo_pedido(**campos):
    dados = dict(
        subtotal=Decimal('100.00'),
        shipping_cost=Decimal('20.00'),
        total=Decimal('120.00'),
        shipping_address=ENDERECO,
        shipping_service=PAC,
        itens=[novo_item()],
    )
    dados.update(campos)
    return Pedido(**dados)


# ====================================================================
# CICLO DE VIDA DO PEDIDO
# ====================================================================

class TestCicloDeVida(unittest.TestCase):

    def test_status_terminais_nao_mudam(self):
        """
        Cenário: Pedidos entregues ou cancelados não aceitam nenhuma transição.
        """
        for terminal in (ciclo.ENTREGUE, ciclo.CANCELADO):
            for novo in ciclo.STATUS_VALIDOS:
                if novo == terminal:
                    continue
                self.assertFalse(ciclo.pode_transicionar(terminal, novo))

    def test_transicao_invalida_levanta_erro(self):
        """
        Cenário: Um pedido enviado não pode voltar para pendente.
        """
        with self.assertRaises(StatusInvalidoError):
            ciclo.validar_transicao(ciclo.ENVIADO, ciclo.PENDENTE)

    def test_pagamento_pago_nao_regride(self):
        """
        Cenário: Um evento atrasado não rebaixa um pagamento já pago.
        """
        self.assertFalse(ciclo.pagamento_pode_mudar(ciclo.PAGAMENTO_PAGO, ciclo.PAGAMENTO_FALHOU))
        self.assertFalse(ciclo.pagamento_pode_mudar(ciclo.PAGAMENTO_PAGO, ciclo.PAGAMENTO_APROVADO))
        self.assertTrue(ciclo.pagamento_pode_mudar(ciclo.PAGAMENTO_APROVADO, ciclo.PAGAMENTO_PAGO))

    def test_total_do_pedido_precisa_bater(self):
        """
        Cenário: total diferente de subtotal + frete é rejeitado na criação.
        """
        with self.assertRaises(DadosInvalidosError):
            novo_pedido(total=Decimal('119.99'))


class TestAtualizarStatusPedido(unittest.TestCase):

    def setUp(self):
        self.repo = RepositorioEmMemoria()
        self.use_case = AtualizarStatusPedidoUseCase(self.repo)

    def test_avanco_permitido(self):
        """
        Cenário: O operador marca um pedido confirmado como em preparação.
        """
        pedido = self.repo.criar(novo_pedido(status=ciclo.CONFIRMADO))

        resultado = self.use_case.executar(pedido.id, 'processing')

        self.assertEqual(resultado.status, ciclo.PROCESSANDO)

    def test_pedido_entregue_nao_pode_ser_cancelado(self):
        """
        Cenário: Transição a partir de status terminal é rejeitada sem escrita.
        """
        pedido = self.repo.criar(novo_pedido(status=ciclo.ENTREGUE))

        with self.assertRaises(StatusInvalidoError):
            self.use_case.executar(pedido.id, ciclo.CANCELADO)
        self.assertEqual(self.repo.escritas, [])


# ====================================================================
# COTAÇÃO DE FRETE
# ====================================================================

class TestCotarFrete(unittest.TestCase):

    def setUp(self):
        self.gateway_mock = Mock()
        self.use_case = CotarFreteUseCase(self.gateway_mock, CONFIG)
        self.gateway_mock.calcular.return_value = [
            {'id': 1, 'name': 'PAC', 'price': '25.90', 'company': {'name': 'Correios'}, 'delivery_time': 8,
             'delivery_range': {'min': 6, 'max': 8}},
            {'id': 2, 'name': 'SEDEX', 'price': '40.10', 'company': {'name': 'Correios'}, 'delivery_time': 3,
             'delivery_range': {'min': 2, 'max': 3}},
            {'id': 3, 'name': '.Package', 'price': '15.00', 'company': {'name': 'Jadlog'}, 'delivery_time': 5},
            {'id': 17, 'name': 'Mini Envios', 'price': '12.00', 'company': {'name': 'Correios'}},
            {'id': 4, 'name': 'PAC', 'error': 'Serviço indisponível para o trecho.', 'company': {'name': 'Correios'}},
        ]

    def test_carrinho_com_tres_itens_iguais(self):
        """
        Cenário: 3 peças de 0,3 kg geram um pacote de 0,9 kg; transportadoras fora da
        lista são excluídas e a retirada na loja aparece com preço zero.
        """
        # ACT
        opcoes = self.use_case.executar('88015-100', [{'weight': 0.3, 'quantity': 3}])

        # ASSERT
        cep_origem, cep_destino, pacote = self.gateway_mock.calcular.call_args[0]
        self.assertEqual(cep_origem, '88348225')
        self.assertEqual(cep_destino, '88015100')
        self.assertEqual(pacote['weight'], 0.9)
        self.assertEqual(pacote['height'], 15)
        self.assertEqual(pacote['insurance_value'], 100)

        nomes = [opcao.name for opcao in opcoes]
        self.assertEqual(nomes, ['Retirada na loja', 'PAC', 'SEDEX'])
        retirada = opcoes[0]
        self.assertTrue(retirada.pickup)
        self.assertEqual(retirada.price, Decimal('0.00'))
        self.assertEqual(retirada.address, CONFIG.endereco_retirada)
        self.assertEqual(opcoes[1].price, Decimal('25.90'))

    def test_carrinho_vazio_cota_pacote_padrao(self):
        """
        Cenário: Sem produtos, um único pacote padrão é cotado.
        """
        self.use_case.executar('88015100', [])

        pacote = self.gateway_mock.calcular.call_args[0][2]
        self.assertEqual(
            {k: pacote[k] for k in ('width', 'height', 'length', 'weight')},
            {'width': 20, 'height': 5, 'length': 30, 'weight': 0.3},
        )

    def test_altura_total_limitada(self):
        """
        Cenário: Muitas peças empilhadas não passam de 100 cm de altura.
        """
        self.use_case.executar('88015100', [{'height': 5, 'quantity': 40}])

        self.assertEqual(self.gateway_mock.calcular.call_args[0][2]['height'], 100)

    def test_cep_invalido_nao_chama_provedor(self):
        """
        Cenário: CEP incompleto é rejeitado antes da chamada externa.
        """
        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar('8801', [])
        self.gateway_mock.calcular.assert_not_called()

    def test_falha_do_provedor_propaga(self):
        """
        Cenário: Indisponibilidade do Melhor Envio sobe como FreteIndisponivelError.
        """
        self.gateway_mock.calcular.side_effect = FreteIndisponivelError()

        with self.assertRaises(FreteIndisponivelError):
            self.use_case.executar('88015100', [])


# ====================================================================
# CRIAÇÃO DO PEDIDO
# ====================================================================

class TestCriarPedido(unittest.TestCase):

    def setUp(self):
        self.repo = RepositorioEmMemoria()
        self.use_case = CriarPedidoUseCase(self.repo)

    def test_cria_pedido_pendente_e_depois_itens(self):
        """
        Cenário: O pedido nasce pendente/pendente e os itens entram em seguida.
        """
        # ARRANGE
        repo_mock = Mock(wraps=self.repo)
        use_case = CriarPedidoUseCase(repo_mock)

        # ACT
        pedido = use_case.executar([novo_item()], ENDERECO, PAC, usuario_id=7)

        # ASSERT
        self.assertEqual([chamada[0] for chamada in repo_mock.method_calls], ['criar', 'adicionar_itens'])
        salvo = self.repo.buscar_por_id(pedido.id)
        self.assertEqual((salvo.status, salvo.payment_status), ('pending', 'pending'))
        self.assertEqual(salvo.subtotal, Decimal('100.00'))
        self.assertEqual(salvo.total, Decimal('120.00'))
        self.assertEqual(salvo.usuario_id, 7)
        self.assertEqual(self.repo.contar_itens(pedido.id), 1)

    def test_falha_nos_itens_mantem_pedido(self):
        """
        Cenário: Se a inserção dos itens falhar, o erro informa o pedido criado
        e ele continua pendente para reconciliação.
        """
        self.repo.falhar_itens = True

        with self.assertRaises(ItensPedidoError) as contexto:
            self.use_case.executar([novo_item()], ENDERECO, PAC)

        pedido = self.repo.buscar_por_id(contexto.exception.pedido_id)
        self.assertIsNotNone(pedido)
        self.assertEqual((pedido.status, pedido.payment_status), ('pending', 'pending'))
        self.assertEqual(self.repo.contar_itens(pedido.id), 0)

    def test_completar_itens_de_pedido_sem_itens(self):
        """
        Cenário: A nova tentativa reinsere os itens que faltaram.
        """
        self.repo.falhar_itens = True
        with self.assertRaises(ItensPedidoError) as contexto:
            self.use_case.executar([novo_item()], ENDERECO, PAC)
        self.repo.falhar_itens = False

        pedido = self.repo.buscar_por_id(contexto.exception.pedido_id)
        self.use_case.completar_itens(pedido, [novo_item()])

        self.assertEqual(self.repo.contar_itens(pedido.id), 1)

    def test_pedido_sem_itens_e_rejeitado(self):
        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar([], ENDERECO, PAC)
        self.assertEqual(self.repo.pedidos, {})


# ====================================================================
# PAGAMENTO
# ====================================================================

class TestMontarSolicitacao(unittest.TestCase):

    def setUp(self):
        self.corpo = {
            'items': [{'id': 'p1', 'title': 'Vestido', 'quantity': 2, 'unit_price': 10}],
            'payer': {'email': 'ana@example.com', 'name': 'Ana Souza', 'document': '123.456.789-09'},
            'external_reference': 'pedido-1',
        }

    def test_sem_metodo_vira_preferencia(self):
        solicitacao = montar_solicitacao(self.corpo)

        self.assertIsInstance(solicitacao, SolicitacaoPreferencia)
        self.assertEqual(solicitacao.itens[0].unit_price, Decimal('10'))
        self.assertEqual(solicitacao.pagador.document, '12345678909')

    def test_com_metodo_vira_cobranca_direta(self):
        self.corpo.update(payment_method_id='pix', shipping_cost='5.00')

        solicitacao = montar_solicitacao(self.corpo)

        self.assertIsInstance(solicitacao, SolicitacaoCobrancaDireta)
        self.assertEqual(solicitacao.payment_method_id, 'pix')
        self.assertEqual(solicitacao.shipping_cost, Decimal('5.00'))

    def test_item_invalido_rejeita_a_requisicao(self):
        """
        Cenário: Quantidade zero ou preço não numérico rejeitam tudo.
        """
        for item in (
            {'title': 'Vestido', 'quantity': 0, 'unit_price': 10},
            {'title': 'Vestido', 'quantity': 1, 'unit_price': 'dez'},
            {'title': '', 'quantity': 1, 'unit_price': 10},
        ):
            self.corpo['items'] = [item]
            with self.assertRaises(DadosInvalidosError):
                montar_solicitacao(self.corpo)

    def test_campos_obrigatorios(self):
        del self.corpo['external_reference']
        with self.assertRaises(DadosInvalidosError):
            montar_solicitacao(self.corpo)


class TestCriarPagamento(unittest.TestCase):

    def setUp(self):
        self.gateway_mock = Mock()
        self.repo = RepositorioEmMemoria()
        self.use_case = CriarPagamentoUseCase(self.gateway_mock, self.repo, CONFIG)
        self.pedido = self.repo.criar(novo_pedido(
            subtotal=Decimal('20.00'), shipping_cost=Decimal('5.00'), total=Decimal('25.00'),
        ))
        self.itens = [ItemPagamento(id='p1', title='Vestido', quantity=2, unit_price=Decimal('10.00'))]
        self.pagador = Pagador(
            email='ana@example.com', first_name='Ana', last_name='Souza', document='12345678909',
        )

    def _direta(self, metodo, **campos):
        dados = dict(
            itens=self.itens,
            pagador=self.pagador,
            external_reference=self.pedido.id,
            shipping_cost=Decimal('5.00'),
            payment_method_id=metodo,
        )
        dados.update(campos)
        return SolicitacaoCobrancaDireta(**dados)

    def test_preferencia_com_urls_padrao(self):
        """
        Cenário: Sem back_urls, o retorno aponta para a página do pedido.
        """
        self.gateway_mock.criar_preferencia.return_value = ResultadoPagamento(
            id='pref-1', init_point='https://mp.test/init', sandbox_init_point='https://mp.test/sandbox',
        )
        solicitacao = SolicitacaoPreferencia(
            itens=self.itens, pagador=self.pagador, external_reference='pedido-1', shipping_cost=Decimal('5.00'),
        )

        resultado = self.use_case.executar(solicitacao)

        kwargs = self.gateway_mock.criar_preferencia.call_args.kwargs
        self.assertEqual(kwargs['back_urls'], {
            'success': 'https://loja.test/pedido/pedido-1',
            'failure': 'https://loja.test/pedido/pedido-1',
            'pending': 'https://loja.test/pedido/pedido-1',
        })
        self.assertEqual(kwargs['notification_url'], 'https://loja.test/api/webhooks/mercadopago/')
        self.assertEqual([item.title for item in kwargs['itens']], ['Vestido', 'Frete'])
        self.assertEqual(resultado.to_dict()['init_point'], 'https://mp.test/init')

    def test_pix_soma_frete_e_atualiza_pedido(self):
        """
        Cenário: Itens 10 x 2 + frete 5 cobram 25 e a aprovação síncrona já
        aparece no pedido.
        """
        # ARRANGE
        self.gateway_mock.criar_cobranca.return_value = ResultadoPagamento(
            id='987', status='approved', status_detail='accredited', qr_code='000201...',
        )

        # ACT
        resultado = self.use_case.executar(self._direta('pix'))

        # ASSERT
        kwargs = self.gateway_mock.criar_cobranca.call_args.kwargs
        self.assertEqual(kwargs['valor'], Decimal('25.00'))
        self.assertIn('Frete', [item.title for item in kwargs['itens']])
        self.assertEqual(resultado.qr_code, '000201...')

        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual(pedido.payment_status, ciclo.PAGAMENTO_APROVADO)
        self.assertEqual(pedido.mercado_pago_payment_id, '987')
        self.assertEqual(pedido.status, ciclo.PENDENTE)

    def test_pagamento_em_analise_fica_pendente(self):
        self.gateway_mock.criar_cobranca.return_value = ResultadoPagamento(id='988', status='in_process')

        self.use_case.executar(self._direta('visa', token='tok_123', installments=2))

        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual(pedido.payment_status, ciclo.PAGAMENTO_PENDENTE)
        self.assertEqual(pedido.mercado_pago_payment_id, '988')

    def test_pagamento_rejeitado(self):
        """
        Cenário: status 'rejected' vira PagamentoRecusadoError com o status_detail.
        """
        self.gateway_mock.criar_cobranca.return_value = ResultadoPagamento(
            id='989', status='rejected', status_detail='cc_rejected_insufficient_amount',
        )

        with self.assertRaises(PagamentoRecusadoError) as contexto:
            self.use_case.executar(self._direta('visa', token='tok_123'))

        self.assertEqual(contexto.exception.status_detail, 'cc_rejected_insufficient_amount')
        self.assertEqual(self.repo.buscar_por_id(self.pedido.id).payment_status, ciclo.PAGAMENTO_REJEITADO)

    def test_cartao_sem_token_nao_chama_processador(self):
        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar(self._direta('master'))
        self.gateway_mock.criar_cobranca.assert_not_called()

    def test_boleto_sem_cidade_nao_chama_processador(self):
        """
        Cenário: Boleto exige endereço completo; a falta da cidade é erro de validação.
        """
        self.pagador.address = {
            'zip_code': '88015100', 'street_name': 'Rua das Flores', 'street_number': '10', 'federal_unit': 'SC',
        }

        with self.assertRaises(DadosInvalidosError) as contexto:
            self.use_case.executar(self._direta('bolbradesco'))

        self.assertIn('city', contexto.exception.message)
        self.gateway_mock.criar_cobranca.assert_not_called()

    def test_pix_sem_documento(self):
        self.pagador.document = ''

        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar(self._direta('pix'))
        self.gateway_mock.criar_cobranca.assert_not_called()

    def test_resposta_sincrona_nao_rebaixa_pedido_pago(self):
        """
        Cenário: O webhook já marcou o pedido como pago; a resposta síncrona
        'approved' que chega depois não altera nada.
        """
        self.repo.atualizar(self.pedido.id, payment_status=ciclo.PAGAMENTO_PAGO, status=ciclo.CONFIRMADO)
        self.repo.escritas.clear()
        self.gateway_mock.criar_cobranca.return_value = ResultadoPagamento(id='987', status='approved')

        self.use_case.executar(self._direta('pix'))

        self.assertEqual(self.repo.escritas, [])
        self.assertEqual(self.repo.buscar_por_id(self.pedido.id).payment_status, ciclo.PAGAMENTO_PAGO)


# ====================================================================
# WEBHOOK DE PAGAMENTO
# ====================================================================

class TestWebhookPagamento(unittest.TestCase):

    def setUp(self):
        self.gateway_mock = Mock()
        self.repo = RepositorioEmMemoria()
        self.use_case = ProcessarWebhookPagamentoUseCase(self.gateway_mock, self.repo)
        self.pedido = self.repo.criar(novo_pedido())

    def _pagamento(self, status):
        self.gateway_mock.consultar_pagamento.return_value = TransacaoPagamento(
            referencia_externa=self.pedido.id, pagamento_id='555', status=status,
        )

    def test_aprovado_confirma_pedido(self):
        self._pagamento('approved')

        pedido = self.use_case.executar({'type': 'payment', 'data': {'id': '555'}})

        self.gateway_mock.consultar_pagamento.assert_called_once_with('555')
        self.assertEqual((pedido.payment_status, pedido.status), ('paid', 'confirmed'))
        self.assertEqual(pedido.mercado_pago_payment_id, '555')

    def test_entrega_repetida_e_idempotente(self):
        """
        Cenário: O mesmo evento entregue duas vezes resulta no mesmo estado,
        e a segunda entrega não escreve nada.
        """
        self._pagamento('approved')
        evento = {'type': 'payment', 'data': {'id': '555'}}

        primeiro = self.use_case.executar(evento)
        escritas = len(self.repo.escritas)
        segundo = self.use_case.executar(evento)

        self.assertEqual(
            (primeiro.status, primeiro.payment_status), (segundo.status, segundo.payment_status),
        )
        self.assertEqual(len(self.repo.escritas), escritas)

    def test_rejeitado_falha_pedido(self):
        self._pagamento('rejected')

        pedido = self.use_case.executar({'data': {'id': '555'}})

        self.assertEqual((pedido.payment_status, pedido.status), ('failed', 'failed'))

    def test_rejeicao_atrasada_nao_rebaixa_pago(self):
        self._pagamento('approved')
        self.use_case.executar({'data': {'id': '555'}})
        self._pagamento('cancelled')

        pedido = self.use_case.executar({'data': {'id': '555'}})

        self.assertEqual((pedido.payment_status, pedido.status), ('paid', 'confirmed'))

    def test_pedido_enviado_nao_regride(self):
        """
        Cenário: Aprovação tardia de um pedido já enviado marca o pagamento
        sem voltar o status de atendimento.
        """
        self.repo.atualizar(self.pedido.id, status=ciclo.ENVIADO, payment_status=ciclo.PAGAMENTO_APROVADO)
        self._pagamento('approved')

        pedido = self.use_case.executar({'data': {'id': '555'}})

        self.assertEqual((pedido.payment_status, pedido.status), ('paid', 'shipped'))

    def test_corpo_desconhecido_e_ignorado(self):
        for corpo in (None, 'texto', {}, {'type': 'merchant_order', 'data': {'id': '1'}}, {'data': {'id': 'abc'}}):
            self.assertIsNone(self.use_case.executar(corpo))
        self.gateway_mock.consultar_pagamento.assert_not_called()

    def test_id_pela_url_do_resource(self):
        self._pagamento('approved')

        self.use_case.executar({'topic': 'payment', 'resource': 'https://api.mercadopago.com/v1/payments/555'})

        self.gateway_mock.consultar_pagamento.assert_called_once_with('555')

    def test_id_pela_query_string(self):
        self._pagamento('approved')

        self.use_case.executar({}, {'type': 'payment', 'data.id': '555'})

        self.gateway_mock.consultar_pagamento.assert_called_once_with('555')


class TestCorridaSincronoWebhook(unittest.TestCase):
    """A resposta síncrona e o webhook convergem para o mesmo estado em qualquer ordem."""

    def setUp(self):
        self.gateway_mock = Mock()
        self.gateway_mock.criar_cobranca.return_value = ResultadoPagamento(id='777', status='approved')
        self.repo = RepositorioEmMemoria()
        self.pedido = self.repo.criar(novo_pedido(
            subtotal=Decimal('20.00'), shipping_cost=Decimal('0.00'), total=Decimal('20.00'),
        ))
        self.gateway_mock.consultar_pagamento.return_value = TransacaoPagamento(
            referencia_externa=self.pedido.id, pagamento_id='777', status='approved',
        )
        self.pagamento = CriarPagamentoUseCase(self.gateway_mock, self.repo, CONFIG)
        self.webhook = ProcessarWebhookPagamentoUseCase(self.gateway_mock, self.repo)
        self.solicitacao = SolicitacaoCobrancaDireta(
            itens=[ItemPagamento(id='p1', title='Saia', quantity=1, unit_price=Decimal('20.00'))],
            pagador=Pagador(email='ana@example.com', name='Ana Souza', document='12345678909'),
            external_reference=self.pedido.id,
            payment_method_id='pix',
        )

    def _estado(self):
        pedido = self.repo.buscar_por_id(self.pedido.id)
        return pedido.payment_status, pedido.status, pedido.mercado_pago_payment_id

    def test_sincrono_depois_webhook(self):
        self.pagamento.executar(self.solicitacao)
        self.webhook.executar({'data': {'id': '777'}})

        self.assertEqual(self._estado(), ('paid', 'confirmed', '777'))

    def test_webhook_depois_sincrono(self):
        self.webhook.executar({'data': {'id': '777'}})
        self.pagamento.executar(self.solicitacao)

        self.assertEqual(self._estado(), ('paid', 'confirmed', '777'))

    def test_webhook_grava_entre_a_resposta_e_a_escrita_sincrona(self):
        """
        Cenário: O webhook obtém a trava do pedido depois que a cobrança
        respondeu 'approved' e antes da escrita síncrona. O pedido continua pago.
        """
        # ARRANGE
        self.repo.antes_de_travar = lambda: self.webhook.executar({'data': {'id': '777'}})

        # ACT
        self.pagamento.executar(self.solicitacao)

        # ASSERT
        self.assertIsNone(self.repo.antes_de_travar)
        self.assertEqual(self._estado(), ('paid', 'confirmed', '777'))
        self.assertNotIn({'payment_status': 'approved', 'mercado_pago_payment_id': '777'}, self.repo.escritas)

    def test_sincrono_grava_entre_a_consulta_e_a_escrita_do_webhook(self):
        self.repo.antes_de_travar = lambda: self.pagamento.executar(self.solicitacao)

        self.webhook.executar({'data': {'id': '777'}})

        self.assertEqual(self._estado(), ('paid', 'confirmed', '777'))


# ====================================================================
# ETIQUETA DE ENVIO
# ====================================================================

class TestGerarEtiqueta(unittest.TestCase):

    def setUp(self):
        self.gateway_mock = Mock()
        self.gateway_mock.adicionar_ao_carrinho.return_value = 'me-1'
        self.gateway_mock.comprar.return_value = {}
        self.gateway_mock.gerar.return_value = {}
        self.gateway_mock.imprimir.return_value = 'https://melhorenvio.test/etiqueta.pdf'
        self.gateway_mock.rastrear.return_value = 'BR123456789'
        self.repo = RepositorioEmMemoria()
        self.use_case = GerarEtiquetaUseCase(self.gateway_mock, self.repo, CONFIG)
        self.pedido = self.repo.criar(novo_pedido(payment_status=ciclo.PAGAMENTO_PAGO, status=ciclo.CONFIRMADO))

    def test_saga_completa(self):
        """
        Cenário: Carrinho, compra, geração, impressão e rastreio concluídos;
        o pedido passa a enviado com o código de rastreio.
        """
        # ACT
        resultado = self.use_case.executar(self.pedido.id)

        # ASSERT
        self.assertTrue(resultado.success)
        self.assertEqual(resultado.tracking_code, 'BR123456789')
        self.assertEqual(resultado.to_dict()['label_url'], 'https://melhorenvio.test/etiqueta.pdf')

        envio = self.gateway_mock.adicionar_ao_carrinho.call_args[0][0]
        self.assertEqual(envio['service'], 1)
        self.assertEqual(envio['options']['tags'], [{'tag': self.pedido.id, 'url': ''}])
        self.assertEqual(envio['to']['document'], '12345678909')
        self.assertEqual(envio['from']['postal_code'], '88348225')
        self.assertEqual(envio['volumes'][0]['insurance_value'], 120.0)
        self.assertEqual(envio['volumes'][0]['weight'], 0.2)

        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual(pedido.status, ciclo.ENVIADO)
        self.assertEqual(pedido.tracking_code, 'BR123456789')
        self.assertEqual(pedido.melhor_envio_id, 'me-1')
        self.assertEqual(pedido.label_step, 'tracked')

    def test_pagamento_nao_confirmado(self):
        self.repo.atualizar(self.pedido.id, payment_status=ciclo.PAGAMENTO_PENDENTE)

        with self.assertRaises(StatusInvalidoError):
            self.use_case.executar(self.pedido.id)
        self.gateway_mock.adicionar_ao_carrinho.assert_not_called()

    def test_retirada_na_loja_nao_gera_etiqueta(self):
        pedido = self.repo.criar(novo_pedido(
            shipping_service=RETIRADA, shipping_cost=Decimal('0.00'), total=Decimal('100.00'),
            payment_status=ciclo.PAGAMENTO_APROVADO,
        ))

        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar(pedido.id)
        self.gateway_mock.adicionar_ao_carrinho.assert_not_called()

    def test_sem_documento_do_destinatario(self):
        sem_documento = Endereco.from_dict(dict(ENDERECO.to_dict(), document=''))
        pedido = self.repo.criar(novo_pedido(shipping_address=sem_documento, payment_status=ciclo.PAGAMENTO_PAGO))

        with self.assertRaises(DadosInvalidosError):
            self.use_case.executar(pedido.id)
        self.gateway_mock.adicionar_ao_carrinho.assert_not_called()

    def test_saldo_insuficiente_vira_rascunho(self):
        """
        Cenário: O checkout da etiqueta falha; o resultado é um rascunho com o
        id do carrinho e o pedido não é marcado como enviado.
        """
        self.gateway_mock.comprar.side_effect = ProvedorRecusouError('Saldo insuficiente', status_code=422)

        resultado = self.use_case.executar(self.pedido.id)

        self.assertFalse(resultado.success)
        self.assertTrue(resultado.draft)
        self.assertEqual(resultado.melhor_envio_id, 'me-1')
        self.gateway_mock.gerar.assert_not_called()
        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual(pedido.status, ciclo.CONFIRMADO)
        self.assertEqual(pedido.label_step, 'drafted')

    def test_falha_depois_da_compra(self):
        """
        Cenário: A etiqueta já foi paga e a geração falha: erro distinto com o
        id do carrinho e a etapa.
        """
        self.gateway_mock.gerar.side_effect = ProvedorIndisponivelError()

        with self.assertRaises(EtiquetaNaoRecuperavelError) as contexto:
            self.use_case.executar(self.pedido.id)

        self.assertEqual(contexto.exception.melhor_envio_id, 'me-1')
        self.assertEqual(contexto.exception.etapa, 'generate')
        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual(pedido.label_step, 'failed')
        self.assertEqual(pedido.label_failed_step, 'generate')
        self.assertIsNone(pedido.tracking_code)

    def test_rastreio_ausente_conclui_com_etiqueta_impressa(self):
        """
        Cenário: O Melhor Envio ainda não liberou o rastreio. A etiqueta impressa
        é um sucesso; o pedido continua confirmado até o webhook trazer o código.
        """
        self.gateway_mock.rastrear.return_value = None

        resultado = self.use_case.executar(self.pedido.id)

        self.assertTrue(resultado.success)
        self.assertIsNone(resultado.tracking_code)
        self.assertEqual(resultado.to_dict()['step'], 'printed')
        self.assertEqual(resultado.label_url, 'https://melhorenvio.test/etiqueta.pdf')
        pedido = self.repo.buscar_por_id(self.pedido.id)
        self.assertEqual((pedido.status, pedido.label_step), (ciclo.CONFIRMADO, 'printed'))
        self.assertIsNone(pedido.label_failed_step)
        self.assertIsNone(pedido.tracking_code)

    def test_reconciliar_impressa_sem_rastreio_nao_reimprime(self):
        self.repo.atualizar(
            self.pedido.id, melhor_envio_id='me-9', label_step='printed',
            label_url='https://melhorenvio.test/me-9.pdf',
        )
        self.gateway_mock.consultar_envio.return_value = {'id': 'me-9', 'status': 'printed'}

        resultado = self.use_case.reconciliar(self.pedido.id)

        self.gateway_mock.imprimir.assert_not_called()
        self.gateway_mock.rastrear.assert_called_once_with('me-9')
        self.assertEqual(resultado.tracking_code, 'BR123456789')
        self.assertEqual(resultado.label_url, 'https://melhorenvio.test/me-9.pdf')
        self.assertEqual(self.repo.buscar_por_id(self.pedido.id).status, ciclo.ENVIADO)

    def test_retomada_nao_cria_novo_carrinho(self):
        """
        Cenário: Queda entre o checkout e a geração; a nova execução consulta o
        Melhor Envio e continua da geração com o mesmo id.
        """
        self.repo.atualizar(self.pedido.id, melhor_envio_id='me-9', label_step='purchased')
        self.gateway_mock.consultar_envio.return_value = {'id': 'me-9', 'status': 'released'}

        resultado = self.use_case.executar(self.pedido.id)

        self.gateway_mock.adicionar_ao_carrinho.assert_not_called()
        self.gateway_mock.comprar.assert_not_called()
        self.gateway_mock.gerar.assert_called_once_with('me-9')
        self.assertEqual(resultado.melhor_envio_id, 'me-9')
        self.assertEqual(self.repo.buscar_por_id(self.pedido.id).tracking_code, 'BR123456789')

    def test_reconciliar_etiqueta_impressa(self):
        self.repo.atualizar(self.pedido.id, melhor_envio_id='me-9', label_step='failed', label_failed_step='tracking')
        self.gateway_mock.consultar_envio.return_value = {'id': 'me-9', 'status': 'printed'}

        resultado = self.use_case.reconciliar(self.pedido.id)

        self.gateway_mock.gerar.assert_not_called()
        self.gateway_mock.imprimir.assert_called_once_with('me-9')
        self.assertTrue(resultado.success)
        self.assertIsNone(self.repo.buscar_por_id(self.pedido.id).label_failed_step)

    def test_reconciliar_sem_etiqueta(self):
        with self.assertRaises(DadosInvalidosError):
            self.use_case.reconciliar(self.pedido.id)


# ====================================================================
# WEBHOOK DE FRETE
# ====================================================================

class TestWebhookFrete(unittest.TestCase):

    def setUp(self):
        self.repo = RepositorioEmMemoria()
        self.use_case = ProcessarWebhookFreteUseCase(self.repo)
        self.pedido = self.repo.criar(novo_pedido(tracking_code='BR1', status=ciclo.ENVIADO))

    def test_evento_so_com_status_preserva_rastreio(self):
        """
        Cenário: Evento apenas com status não apaga o código de rastreio; tags
        malformadas são ignoradas.
        """
        evento = {
            'event': 'order.posted',
            'data': {'status': 'posted', 'tags': [{'tag': 'pedido-antigo'}, {'tag': self.pedido.id}]},
        }

        pedido = self.use_case.executar(evento)

        self.assertEqual(pedido.tracking_code, 'BR1')
        self.assertEqual(pedido.shipping_status, 'posted')
        self.assertEqual(self.repo.escritas, [{'shipping_status': 'posted'}])

    def test_self_tracking(self):
        evento = {'data': {'self_tracking': 'ME999', 'tags': [{'tag': self.pedido.id}]}}

        pedido = self.use_case.executar(evento)

        self.assertEqual(pedido.tracking_code, 'ME999')

    def test_rastreio_tardio_conclui_etiqueta_impressa(self):
        """
        Cenário: A etiqueta foi impressa sem rastreio; o evento com o código
        grava o rastreio e marca o pedido como enviado.
        """
        pedido = self.repo.criar(novo_pedido(
            status=ciclo.CONFIRMADO, payment_status=ciclo.PAGAMENTO_PAGO, label_step='printed',
        ))

        atualizado = self.use_case.executar(
            {'event': 'order.posted', 'data': {'tracking': 'BR777', 'status': 'posted', 'tags': [{'tag': pedido.id}]}}
        )

        self.assertEqual(atualizado.tracking_code, 'BR777')
        self.assertEqual((atualizado.status, atualizado.label_step), (ciclo.ENVIADO, 'tracked'))

    def test_sondagens_e_pedidos_desconhecidos(self):
        for corpo in (None, {}, {'data': 'x'}, {'data': {'status': 'posted', 'tags': [{'tag': 'abc'}]}},
                      {'data': {'status': 'posted', 'tags': [{'tag': '9b2e1c6e-3f1a-4c55-9a57-2f0a4d1c1111'}]}}):
            self.assertIsNone(self.use_case.executar(corpo))
        self.assertEqual(self.repo.escritas, [])


# ====================================================================
# CHECKOUT EM ETAPAS
# ====================================================================

class TestCheckout(unittest.TestCase):

    def setUp(self):
        self.repo = RepositorioEmMemoria()
        self.cotar_mock = Mock()
        self.cotar_mock.executar.return_value = [RETIRADA, PAC, SEDEX]
        self.pagamento_mock = Mock()
        self.pagamento_mock.executar.return_value = ResultadoPagamento(
            id='321', status='pending', qr_code='000201', qr_code_base64='iVBOR', ticket_url='https://mp.test/ticket',
        )
        self.use_case = CheckoutUseCase(
            cotar_frete=self.cotar_mock,
            criar_pedido=CriarPedidoUseCase(self.repo),
            criar_pagamento=self.pagamento_mock,
            pedido_repo=self.repo,
        )
        self.pagador = Pagador(email='ana@example.com', first_name='Ana', last_name='Souza', document='12345678909')

    def _sessao_no_pagamento(self):
        sessao = SessaoCheckout()
        self.use_case.confirmar_endereco(sessao, ENDERECO, [novo_item()])
        self.use_case.selecionar_frete(sessao, 1)
        return sessao

    def test_endereco_preseleciona_primeiro_frete_pago(self):
        sessao = SessaoCheckout()

        self.use_case.confirmar_endereco(sessao, ENDERECO, [novo_item()])

        self.assertEqual(sessao.etapa, ETAPA_FRETE)
        self.assertEqual(sessao.frete, PAC)
        self.cotar_mock.executar.assert_called_once_with('88015100', [{'quantity': 2}])

    def test_falha_na_cotacao_mantem_etapa(self):
        self.cotar_mock.executar.side_effect = FreteIndisponivelError()
        sessao = SessaoCheckout()

        with self.assertRaises(FreteIndisponivelError):
            self.use_case.confirmar_endereco(sessao, ENDERECO, [novo_item()])
        self.assertEqual(sessao.etapa, ETAPA_ENDERECO)

    def test_documento_obrigatorio(self):
        sem_documento = Endereco.from_dict(dict(ENDERECO.to_dict(), document='123'))

        with self.assertRaises(DadosInvalidosError):
            self.use_case.confirmar_endereco(SessaoCheckout(), sem_documento, [novo_item()])
        self.cotar_mock.executar.assert_not_called()

    def test_voltar(self):
        sessao = self._sessao_no_pagamento()

        self.use_case.voltar(sessao)
        self.assertEqual(sessao.etapa, ETAPA_FRETE)
        self.use_case.voltar(sessao)
        self.use_case.voltar(sessao)
        self.assertEqual(sessao.etapa, ETAPA_ENDERECO)

    def test_finalizar_pix(self):
        """
        Cenário: Pix cria um único pedido e devolve o QR code.
        """
        sessao = self._sessao_no_pagamento()

        resultado = self.use_case.finalizar(sessao, self.pagador, 'pix')

        self.assertEqual(len(self.repo.pedidos), 1)
        solicitacao = self.pagamento_mock.executar.call_args[0][0]
        self.assertEqual(solicitacao.payment_method_id, 'pix')
        self.assertEqual(solicitacao.external_reference, resultado.pedido_id)
        self.assertEqual(solicitacao.shipping_cost, Decimal('20.00'))
        self.assertEqual(resultado.to_dict()['payment']['qr_code'], '000201')

    def test_finalizar_boleto_usa_endereco_de_entrega(self):
        sessao = self._sessao_no_pagamento()

        self.use_case.finalizar(sessao, self.pagador, 'boleto')

        solicitacao = self.pagamento_mock.executar.call_args[0][0]
        self.assertEqual(solicitacao.payment_method_id, 'bolbradesco')
        self.assertEqual(solicitacao.pagador.address['city'], 'Florianópolis')

    def test_nova_tentativa_reaproveita_pedido(self):
        """
        Cenário: A primeira tentativa de pagamento falha; a segunda usa o mesmo
        pedido em vez de criar outro.
        """
        sessao = self._sessao_no_pagamento()
        self.pagamento_mock.executar.side_effect = [
            ProvedorIndisponivelError(),
            ResultadoPagamento(id='322', status='pending'),
        ]

        with self.assertRaises(ProvedorIndisponivelError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')
        pedido_id = sessao.pedido_id
        resultado = self.use_case.finalizar(sessao, self.pagador, 'pix')

        self.assertEqual(len(self.repo.pedidos), 1)
        self.assertEqual(resultado.pedido_id, pedido_id)

    def test_carrinho_alterado_depois_da_recusa_gera_novo_pedido(self):
        """
        Cenário: Pagamento recusado; o cliente volta, aumenta o carrinho e troca
        para SEDEX. A nova cobrança bate com o total de um novo pedido.
        """
        # ARRANGE
        sessao = self._sessao_no_pagamento()
        self.pagamento_mock.executar.side_effect = [
            PagamentoRecusadoError('cc_rejected_other_reason', '900'),
            ResultadoPagamento(id='901', status='pending'),
        ]
        with self.assertRaises(PagamentoRecusadoError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')
        pedido_antigo = sessao.pedido_id

        # ACT
        self.use_case.voltar(sessao)
        self.use_case.voltar(sessao)
        self.use_case.confirmar_endereco(sessao, ENDERECO, [novo_item(quantity=5)])
        self.use_case.selecionar_frete(sessao, 2)
        resultado = self.use_case.finalizar(sessao, self.pagador, 'pix')

        # ASSERT
        self.assertNotEqual(resultado.pedido_id, pedido_antigo)
        self.assertEqual(len(self.repo.pedidos), 2)
        pedido = self.repo.buscar_por_id(resultado.pedido_id)
        self.assertEqual(pedido.total, Decimal('285.00'))
        self.assertEqual(pedido.shipping_service, SEDEX)

        solicitacao = self.pagamento_mock.executar.call_args[0][0]
        cobrado = sum((item.unit_price * item.quantity for item in solicitacao.itens), Decimal('0.00'))
        self.assertEqual(cobrado + solicitacao.shipping_cost, pedido.total)
        self.assertEqual(solicitacao.external_reference, pedido.id)

        antigo = self.repo.buscar_por_id(pedido_antigo)
        self.assertEqual((antigo.total, antigo.status), (Decimal('120.00'), ciclo.PENDENTE))

    def test_voltar_sem_mudancas_reaproveita_pedido(self):
        sessao = self._sessao_no_pagamento()
        self.pagamento_mock.executar.side_effect = [
            PagamentoRecusadoError(),
            ResultadoPagamento(id='902', status='pending'),
        ]
        with self.assertRaises(PagamentoRecusadoError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')
        pedido_id = sessao.pedido_id

        self.use_case.voltar(sessao)
        self.use_case.selecionar_frete(sessao, 1)
        resultado = self.use_case.finalizar(sessao, self.pagador, 'pix')

        self.assertEqual(resultado.pedido_id, pedido_id)
        self.assertEqual(len(self.repo.pedidos), 1)

    def test_falha_nos_itens_e_nova_tentativa(self):
        sessao = self._sessao_no_pagamento()
        self.repo.falhar_itens = True

        with self.assertRaises(ItensPedidoError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')
        self.pagamento_mock.executar.assert_not_called()
        self.assertIsNotNone(sessao.pedido_id)

        self.repo.falhar_itens = False
        self.use_case.finalizar(sessao, self.pagador, 'pix')

        self.assertEqual(len(self.repo.pedidos), 1)
        self.assertEqual(self.repo.contar_itens(sessao.pedido_id), 1)

    def test_pedido_ja_pago_nao_e_cobrado_de_novo(self):
        sessao = self._sessao_no_pagamento()
        self.use_case.finalizar(sessao, self.pagador, 'pix')
        self.repo.atualizar(sessao.pedido_id, payment_status=ciclo.PAGAMENTO_PAGO)

        with self.assertRaises(StatusInvalidoError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')
        self.assertEqual(self.pagamento_mock.executar.call_count, 1)

    def test_cartao_sem_token(self):
        sessao = self._sessao_no_pagamento()

        with self.assertRaises(DadosInvalidosError):
            self.use_case.finalizar(sessao, self.pagador, 'card', cartao={'payment_method_id': 'visa'})
        self.assertEqual(self.repo.pedidos, {})

    def test_pagador_incompleto(self):
        sessao = self._sessao_no_pagamento()
        self.pagador.last_name = ''

        with self.assertRaises(DadosInvalidosError):
            self.use_case.finalizar(sessao, self.pagador, 'pix')

    def test_finalizar_antes_do_frete(self):
        with self.assertRaises(StatusInvalidoError):
            self.use_case.finalizar(SessaoCheckout(), self.pagador, 'pix')

    def test_sessao_sobrevive_a_serializacao(self):
        sessao = self._sessao_no_pagamento()
        sessao.pedido_id = 'abc'

        restaurada = SessaoCheckout.from_dict(sessao.to_dict())

        self.assertEqual(restaurada.etapa, ETAPA_PAGAMENTO)
        self.assertEqual(restaurada.frete, PAC)
        self.assertEqual(restaurada.endereco, ENDERECO)
        self.assertEqual(restaurada.pedido_id, 'abc')
        self.assertEqual(restaurada.itens[0].price, Decimal('50.00'))


class TestConfiguracao(unittest.TestCase):

    def test_token_ausente(self):
        with self.assertRaises(ConfiguracaoAusenteError):
            ConfiguracaoLoja().exigir_token_mercado_pago()
        with self.assertRaises(ConfiguracaoAusenteError):
            ConfiguracaoLoja().exigir_token_melhor_envio()


class TestWaitForDb(unittest.TestCase):

    @patch('mirandacoast.core.management.commands.wait_for_db.time.sleep')
    @patch('mirandacoast.core.management.commands.wait_for_db.connections')
    def test_aguarda_ate_conectar(self, connections_mock, sleep_mock):
        connections_mock.__getitem__.return_value.ensure_connection.side_effect = [
            OperationalError(), OperationalError(), None,
        ]

        call_command('wait_for_db', tentativas=5, intervalo=0, stdout=StringIO())

        self.assertEqual(sleep_mock.call_count, 2)

    @patch('mirandacoast.core.management.commands.wait_for_db.time.sleep')
    @patch('mirandacoast.core.management.commands.wait_for_db.connections')
    def test_desiste_depois_das_tentativas(self, connections_mock, sleep_mock):
        connections_mock.__getitem__.return_value.ensure_connection.side_effect = OperationalError()

        with self.assertRaises(CommandError):
            call_command('wait_for_db', tentativas=3, intervalo=0, stdout=StringIO())
        self.assertEqual(sleep_mock.call_count, 3)


if __name__ == '__main__':
    unittest.main()
