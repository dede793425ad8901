# mirandacoast/core/use_cases.py
"""
Implementação dos Casos de Uso (Lógica de Negócio) do checkout e da expedição.
Esta camada depende apenas das Entidades e Portas (Interfaces) do Core,
garantindo o isolamento da lógica de negócio.
"""
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Dict, Any

from mirandacoast.core import status as ciclo
from mirandacoast.core.config import ConfiguracaoLoja
from mirandacoast.core.entities import (
    Pedido, ItemPedido, Endereco, OpcaoFrete, ItemPagamento, Pagador,
    SolicitacaoPagamento, SolicitacaoPreferencia, SolicitacaoCobrancaDireta,
    ResultadoPagamento, ResultadoEtiqueta, EtapaEtiqueta,
    para_decimal, somente_digitos,
)
from mirandacoast.core.exceptions import (
    DadosInvalidosError,
    ItensPedidoError,
    PagamentoRecusadoError,
    PedidoNaoEncontradoError,
    ProvedorIndisponivelError,
    ProvedorRecusouError,
    StatusInvalidoError,
    EtiquetaNaoRecuperavelError,
)
from mirandacoast.core.ports import IPedidoRepository, IGatewayPagamento, IGatewayFrete

logger = logging.getLogger(__name__)


# ====================================================================
# 1. COTAÇÃO DE FRETE
# ====================================================================

class CotarFreteUseCase:
    """
    Monta um pacote sintético a partir do carrinho, consulta o Melhor Envio e
    aplica a política comercial: apenas serviços dos Correios permitidos, mais
    a opção de retirada na loja.
    """

    # Todas as peças de roupa seguem num pacote pequeno padrão.
    PACOTE_PADRAO = {
        'width': Decimal('20'),
        'height': Decimal('5'),
        'length': Decimal('30'),
        'weight': Decimal('0.3'),
    }
    ALTURA_MAXIMA = Decimal('100')
    VALOR_SEGURO = 100

    TRANSPORTADORA_PERMITIDA = 'correios'
    SERVICOS_PERMITIDOS = ('PAC', 'SEDEX')

    ID_RETIRADA = 'retirada'

    def __init__(self, gateway_frete: IGatewayFrete, configuracao: ConfiguracaoLoja):
        self.gateway_frete = gateway_frete
        self.configuracao = configuracao

    def executar(
        self,
        cep_destino: str,
        produtos: List[Dict[str, Any]],
        cep_origem: Optional[str] = None,
    ) -> List[OpcaoFrete]:
        """Retorna as opções de frete ordenadas pelo preço (crescente)."""
        cep_origem = somente_digitos(cep_origem or self.configuracao.cep_origem)
        cep_destino = somente_digitos(cep_destino)
        if len(cep_destino) != 8:
            raise DadosInvalidosError("Por favor, informe um CEP válido.")

        pacote = self.montar_pacote(produtos)
        logger.info("Calculando frete %s -> %s pacote=%s", cep_origem, cep_destino, pacote)

        opcoes_brutas = self.gateway_frete.calcular(cep_origem, cep_destino, pacote)
        opcoes = self.filtrar_opcoes(opcoes_brutas)
        opcoes.append(self.opcao_retirada())
        return sorted(opcoes, key=lambda opcao: opcao.price)

    def montar_pacote(self, produtos: List[Dict[str, Any]]) -> Dict[str, Any]:
        padrao = self.PACOTE_PADRAO
        if not produtos:
            peso_total = padrao['weight']
            altura_total = padrao['height']
            largura, comprimento = padrao['width'], padrao['length']
        else:
            peso_total = Decimal('0')
            altura_total = Decimal('0')
            largura, comprimento = padrao['width'], padrao['length']
            for produto in produtos:
                quantidade = int(produto.get('quantity') or 1)
                peso_total += self._dimensao(produto, 'weight') * quantidade
                altura_total += self._dimensao(produto, 'height') * quantidade
                largura = max(largura, self._dimensao(produto, 'width'))
                comprimento = max(comprimento, self._dimensao(produto, 'length'))

        return {
            'id': '1',
            'width': self._numero(largura),
            'height': self._numero(min(altura_total, self.ALTURA_MAXIMA)),
            'length': self._numero(comprimento),
            'weight': self._numero(peso_total),
            'insurance_value': self.VALOR_SEGURO,
            'quantity': 1,
        }

    def filtrar_opcoes(self, opcoes_brutas: List[Dict[str, Any]]) -> List[OpcaoFrete]:
        opcoes = []
        for bruta in opcoes_brutas or []:
            if not isinstance(bruta, dict) or bruta.get('error') or not bruta.get('price'):
                continue
            empresa = bruta.get('company')
            nome_empresa = empresa.get('name') if isinstance(empresa, dict) else empresa
            nome_empresa = nome_empresa or bruta.get('name') or ''
            nome_servico = (bruta.get('name') or '').strip()

            if nome_empresa.strip().lower() != self.TRANSPORTADORA_PERMITIDA:
                continue
            if nome_servico.upper() not in self.SERVICOS_PERMITIDOS:
                continue

            opcoes.append(OpcaoFrete(
                id=bruta.get('id'),
                name=nome_servico,
                company=nome_empresa,
                price=para_decimal(bruta['price']),
                delivery_time=bruta.get('delivery_time'),
                delivery_range=bruta.get('delivery_range'),
                currency='BRL',
            ))
        return opcoes

    def opcao_retirada(self) -> OpcaoFrete:
        return OpcaoFrete(
            id=self.ID_RETIRADA,
            name='Retirada na loja',
            company=self.configuracao.nome_loja,
            price=Decimal('0.00'),
            delivery_time=0,
            delivery_range={'min': 0, 'max': 0},
            currency='BRL',
            pickup=True,
            address=self.configuracao.endereco_retirada,
        )

    def _dimensao(self, produto: Dict[str, Any], campo: str) -> Decimal:
        valor = produto.get(campo)
        try:
            valor = Decimal(str(valor)) if valor else Decimal('0')
        except InvalidOperation:
            raise DadosInvalidosError(f"Dimensão '{campo}' inválida: {valor!r}")
        return valor if valor > 0 else self.PACOTE_PADRAO[campo]

    @staticmethod
    def _numero(valor: Decimal):
        return int(valor) if valor == valor.to_integral_value() else float(valor)


# ====================================================================
# 2. CRIAÇÃO DO PEDIDO
# ====================================================================

class CriarPedidoUseCase:
    """
    Cria a linha do pedido e, em seguida, os itens.
    As duas gravações são etapas separadas: se os itens falharem, o pedido
    fica pendente/pendente para reconciliação manual (ItensPedidoError).
    """
    def __init__(self, pedido_repo: IPedidoRepository):
        self.pedido_repo = pedido_repo

    def executar(
        self,
        itens: List[ItemPedido],
        endereco: Endereco,
        frete: OpcaoFrete,
        usuario_id: Optional[int] = None,
    ) -> Pedido:
        if not itens:
            raise DadosInvalidosError("Não é possível criar um pedido sem itens.")
        if frete is None:
            raise DadosInvalidosError("Selecione uma opção de frete.")

        subtotal = sum((item.subtotal for item in itens), Decimal('0.00'))
        pedido = Pedido(
            subtotal=subtotal,
            shipping_cost=frete.price,
            total=subtotal + frete.price,
            shipping_address=endereco,
            shipping_service=frete,
            status=ciclo.PENDENTE,
            payment_status=ciclo.PAGAMENTO_PENDENTE,
            usuario_id=usuario_id,
        )

        pedido = self.pedido_repo.criar(pedido)
        logger.info("Pedido %s criado (total=%s)", pedido.id, pedido.total)

        self._inserir_itens(pedido, itens)
        return pedido

    def completar_itens(self, pedido: Pedido, itens: List[ItemPedido]) -> Pedido:
        """Reinsere os itens de um pedido existente que ficou sem itens."""
        if self.pedido_repo.contar_itens(pedido.id) > 0:
            return pedido
        subtotal = sum((item.subtotal for item in itens), Decimal('0.00'))
        if subtotal != pedido.subtotal:
            raise DadosInvalidosError(
                f"Itens somam {subtotal}, mas o pedido {pedido.id} tem subtotal {pedido.subtotal}."
            )
        self._inserir_itens(pedido, itens)
        return pedido

    def _inserir_itens(self, pedido: Pedido, itens: List[ItemPedido]) -> None:
        try:
            pedido.itens = self.pedido_repo.adicionar_itens(pedido.id, itens)
        except Exception as e:
            logger.exception("Falha ao inserir itens do pedido %s", pedido.id)
            raise ItensPedidoError(pedido.id) from e


# ====================================================================
# 3. PAGAMENTO (Mercado Pago)
# ====================================================================

MENSAGEM_CAMPOS_OBRIGATORIOS = "Campos obrigatórios ausentes: items (lista), payer, external_reference"
MENSAGEM_ITEM_INVALIDO = "Item inválido: title, quantity (>0) e unit_price numérico são obrigatórios"

METODO_PIX = 'pix'
METODO_BOLETO = 'boleto'
METODO_CARTAO = 'card'
METODOS_BOLETO = ('bolbradesco', 'boleto', 'pec')

CAMPOS_ENDERECO_BOLETO = ('zip_code', 'street_name', 'street_number', 'city', 'federal_unit')

STATUS_ACEITOS = ('approved', 'pending', 'in_process', 'authorized')


def classificar_metodo(payment_method_id: str) -> str:
    metodo = (payment_method_id or '').strip().lower()
    if metodo == METODO_PIX:
        return METODO_PIX
    if metodo in METODOS_BOLETO:
        return METODO_BOLETO
    return METODO_CARTAO


def _converter_item(bruto: Dict[str, Any]) -> ItemPagamento:
    if not isinstance(bruto, dict):
        raise DadosInvalidosError(MENSAGEM_ITEM_INVALIDO)
    titulo = bruto.get('title') or bruto.get('product_name')
    try:
        quantidade = int(bruto.get('quantity'))
        preco = Decimal(str(bruto.get('unit_price')))
    except (TypeError, ValueError, InvalidOperation):
        raise DadosInvalidosError(MENSAGEM_ITEM_INVALIDO)
    if not titulo or quantidade <= 0 or not preco.is_finite():
        raise DadosInvalidosError(MENSAGEM_ITEM_INVALIDO)
    return ItemPagamento(
        id=str(bruto.get('id') or titulo),
        title=titulo,
        quantity=quantidade,
        unit_price=preco,
        picture_url=bruto.get('picture_url'),
        description=bruto.get('description'),
    )


def montar_solicitacao(dados: Dict[str, Any]) -> SolicitacaoPagamento:
    """
    Converte o corpo da requisição na união discriminada de solicitações:
    sem `payment_method_id` -> preferência; com ele -> cobrança direta.
    """
    itens = dados.get('items')
    pagador = dados.get('payer')
    referencia = dados.get('external_reference')
    if not itens or not isinstance(itens, list) or not pagador or not referencia:
        raise DadosInvalidosError(MENSAGEM_CAMPOS_OBRIGATORIOS)

    comum = dict(
        itens=[_converter_item(item) for item in itens],
        pagador=Pagador(
            email=pagador.get('email') or '',
            name=pagador.get('name') or '',
            first_name=pagador.get('first_name') or '',
            last_name=pagador.get('last_name') or '',
            document=somente_digitos(pagador.get('document')),
            document_type=pagador.get('document_type') or 'CPF',
            address=pagador.get('address') or {},
        ),
        external_reference=str(referencia),
        back_urls=dados.get('back_urls') or {},
        shipping_cost=para_decimal(dados.get('shipping_cost') or 0),
    )

    if not dados.get('payment_method_id'):
        return SolicitacaoPreferencia(**comum)

    installments = dados.get('installments')
    return SolicitacaoCobrancaDireta(
        payment_method_id=dados['payment_method_id'],
        token=dados.get('token') or None,
        installments=int(installments) if installments else None,
        **comum,
    )


class CriarPagamentoUseCase:
    """
    Cria um pagamento no Mercado Pago. Cada tipo de solicitação tem seu
    próprio fluxo; a validação comum acontece antes de qualquer chamada externa.
    """
    def __init__(
        self,
        gateway_pagamento: IGatewayPagamento,
        pedido_repo: IPedidoRepository,
        configuracao: ConfiguracaoLoja,
    ):
        self.gateway_pagamento = gateway_pagamento
        self.pedido_repo = pedido_repo
        self.configuracao = configuracao
        self._fluxos = {
            SolicitacaoPreferencia: self._criar_preferencia,
            SolicitacaoCobrancaDireta: self._criar_cobranca_direta,
        }

    def executar(self, solicitacao: SolicitacaoPagamento) -> ResultadoPagamento:
        fluxo = self._fluxos.get(type(solicitacao))
        if fluxo is None:
            raise DadosInvalidosError(f"Tipo de solicitação não suportado: {type(solicitacao).__name__}")
        self._validar(solicitacao)
        return fluxo(solicitacao)

    # --- FLUXOS ---

    def _criar_preferencia(self, solicitacao: SolicitacaoPreferencia) -> ResultadoPagamento:
        logger.info("Criando preferência de pagamento para %s", solicitacao.external_reference)
        resultado = self.gateway_pagamento.criar_preferencia(
            solicitacao,
            itens=self.itens_cobrados(solicitacao),
            back_urls=self.resolver_back_urls(solicitacao),
            notification_url=self.resolver_notification_url(solicitacao),
        )
        logger.info("Preferência %s criada", resultado.id)
        return resultado

    def _criar_cobranca_direta(self, solicitacao: SolicitacaoCobrancaDireta) -> ResultadoPagamento:
        metodo = classificar_metodo(solicitacao.payment_method_id)
        self._validar_metodo(solicitacao, metodo)

        itens = self.itens_cobrados(solicitacao)
        valor = sum((item.subtotal for item in itens), Decimal('0')).quantize(Decimal('0.01'))

        logger.info(
            "Criando pagamento direto para %s método=%s valor=%s",
            solicitacao.external_reference, solicitacao.payment_method_id, valor,
        )
        resultado = self.gateway_pagamento.criar_cobranca(
            solicitacao,
            itens=itens,
            valor=valor,
            notification_url=self.resolver_notification_url(solicitacao),
        )
        logger.info("Pagamento %s criado com status %s", resultado.id, resultado.status)

        if resultado.status == 'rejected':
            self._sincronizar_pedido(solicitacao.external_reference, resultado)
            raise PagamentoRecusadoError(resultado.status_detail, resultado.id)
        if resultado.status in STATUS_ACEITOS:
            self._sincronizar_pedido(solicitacao.external_reference, resultado)
        return resultado

    # --- REGRAS ---

    def itens_cobrados(self, solicitacao: SolicitacaoPagamento) -> List[ItemPagamento]:
        """O frete entra como item para o total cobrado bater com o total exibido."""
        itens = list(solicitacao.itens)
        if solicitacao.shipping_cost and solicitacao.shipping_cost > 0:
            itens.append(ItemPagamento(
                id='frete',
                title='Frete',
                quantity=1,
                unit_price=solicitacao.shipping_cost,
                description='Frete',
            ))
        return itens

    def resolver_back_urls(self, solicitacao: SolicitacaoPagamento) -> Dict[str, str]:
        padrao = f"{self._url_base()}/pedido/{solicitacao.external_reference}"
        back_urls = solicitacao.back_urls or {}
        return {
            chave: (back_urls.get(chave) or '').strip() or padrao
            for chave in ('success', 'failure', 'pending')
        }

    def resolver_notification_url(self, solicitacao: SolicitacaoPagamento) -> str:
        return (
            ((solicitacao.back_urls or {}).get('notification') or '').strip()
            or self.configuracao.webhook_pagamento_url
            or f"{self._url_base()}/api/webhooks/mercadopago/"
        )

    def _url_base(self) -> str:
        return (self.configuracao.public_site_url or 'https://example.com').rstrip('/')

    def _validar(self, solicitacao: SolicitacaoPagamento) -> None:
        if not solicitacao.itens or solicitacao.pagador is None or not solicitacao.external_reference:
            raise DadosInvalidosError(MENSAGEM_CAMPOS_OBRIGATORIOS)
        for item in solicitacao.itens:
            preco_valido = isinstance(item.unit_price, (Decimal, int, float)) and Decimal(str(item.unit_price)).is_finite()
            if not item.title or not item.quantity or int(item.quantity) <= 0 or not preco_valido:
                raise DadosInvalidosError(MENSAGEM_ITEM_INVALIDO)

    def _validar_metodo(self, solicitacao: SolicitacaoCobrancaDireta, metodo: str) -> None:
        pagador = solicitacao.pagador
        if metodo == METODO_CARTAO:
            # Apenas cartão tokenizado no cliente; nunca número de cartão.
            if not solicitacao.token:
                raise DadosInvalidosError("Pagamento com cartão exige o token do cartão.")
            return

        faltantes = [
            nome for nome, valor in (
                ('nome', pagador.nome_completo), ('email', pagador.email), ('documento', pagador.document),
            ) if not valor
        ]
        if faltantes:
            raise DadosInvalidosError(f"Dados do pagador incompletos: {', '.join(faltantes)}.")

        if metodo == METODO_BOLETO:
            endereco = pagador.address or {}
            faltantes = [campo for campo in CAMPOS_ENDERECO_BOLETO if not str(endereco.get(campo) or '').strip()]
            if faltantes:
                raise DadosInvalidosError(
                    f"Boleto exige endereço completo do pagador. Faltando: {', '.join(faltantes)}."
                )

    def _sincronizar_pedido(self, pedido_id: str, resultado: ResultadoPagamento) -> None:
        """
        Reflete a resposta do processador no pedido imediatamente, sem esperar o webhook.
        Nunca rebaixa um pedido que o webhook já marcou como pago.
        """
        if resultado.status == 'approved':
            novo_pagamento = ciclo.PAGAMENTO_APROVADO
        elif resultado.status == 'rejected':
            novo_pagamento = ciclo.PAGAMENTO_REJEITADO
        else:
            novo_pagamento = ciclo.PAGAMENTO_PENDENTE

        def calcular(pedido: Pedido) -> Dict[str, Any]:
            if not ciclo.pagamento_pode_mudar(pedido.payment_status, novo_pagamento):
                logger.info(
                    "Pedido %s já está com pagamento '%s'; resposta síncrona '%s' ignorada",
                    pedido_id, pedido.payment_status, novo_pagamento,
                )
                return {}
            campos = {
                'payment_status': novo_pagamento,
                'mercado_pago_payment_id': str(resultado.id) if resultado.id is not None else None,
            }
            if pedido.status == ciclo.FALHOU and novo_pagamento != ciclo.PAGAMENTO_REJEITADO:
                campos['status'] = ciclo.PENDENTE
            return campos

        try:
            # A decisão é tomada sobre a linha travada: um webhook concorrente já gravado é respeitado.
            if self.pedido_repo.atualizar_se(pedido_id, calcular) is None:
                logger.warning("Pagamento %s sem pedido correspondente (%s)", resultado.id, pedido_id)
        except Exception:
            # O pagamento já existe no processador; o webhook reconcilia o pedido.
            logger.exception("Falha ao sincronizar pedido %s com o pagamento %s", pedido_id, resultado.id)


# ====================================================================
# 4. WEBHOOK DE PAGAMENTO
# ====================================================================

class ProcessarWebhookPagamentoUseCase:
    """
    Consumidor idempotente das notificações do Mercado Pago.
    O pagamento é consultado no processador (fonte de verdade) e o status
    é aplicado ao pedido indicado em `external_reference`.
    """

    _STATUS_MAP = {
        'approved': (ciclo.PAGAMENTO_PAGO, ciclo.CONFIRMADO),
        'cancelled': (ciclo.PAGAMENTO_FALHOU, ciclo.FALHOU),
        'rejected': (ciclo.PAGAMENTO_FALHOU, ciclo.FALHOU),
    }

    TOPICOS = ('payment', 'payment.created', 'payment.updated')

    def __init__(self, gateway_pagamento: IGatewayPagamento, pedido_repo: IPedidoRepository):
        self.gateway_pagamento = gateway_pagamento
        self.pedido_repo = pedido_repo

    @classmethod
    def extrair_pagamento_id(cls, dados: Any, parametros: Optional[Dict[str, Any]] = None) -> Optional[str]:
        dados = dados if isinstance(dados, dict) else {}
        parametros = parametros or {}

        topico = dados.get('type') or dados.get('topic') or dados.get('action') or parametros.get('topic') or parametros.get('type')
        if topico and topico not in cls.TOPICOS:
            return None

        corpo = dados.get('data') if isinstance(dados.get('data'), dict) else {}
        candidato = (
            corpo.get('id')
            or dados.get('resource')
            or parametros.get('data.id')
            or parametros.get('id')
        )
        if not candidato:
            return None
        # 'resource' pode vir como URL: .../v1/payments/123
        candidato = str(candidato).rstrip('/').rsplit('/', 1)[-1]
        return candidato if candidato.isdigit() else None

    def executar(self, dados: Any, parametros: Optional[Dict[str, Any]] = None) -> Optional[Pedido]:
        pagamento_id = self.extrair_pagamento_id(dados, parametros)
        if not pagamento_id:
            logger.info("Webhook de pagamento ignorado (sem id de pagamento): %s", dados)
            return None

        transacao = self.gateway_pagamento.consultar_pagamento(pagamento_id)
        if not transacao.referencia_externa:
            logger.warning("Pagamento %s sem external_reference", pagamento_id)
            return None

        pedido = self.pedido_repo.buscar_por_id(transacao.referencia_externa)
        if pedido is None:
            logger.warning("Webhook: pedido %s não encontrado", transacao.referencia_externa)
            return None

        mapeado = self._STATUS_MAP.get(transacao.status)
        if mapeado is None:
            logger.info("Pagamento %s com status '%s': pedido mantido", pagamento_id, transacao.status)
            return pedido

        novo_pagamento, novo_status = mapeado

        def calcular(atual: Pedido) -> Dict[str, Any]:
            if not ciclo.pagamento_pode_mudar(atual.payment_status, novo_pagamento):
                logger.info(
                    "Pedido %s com pagamento '%s' não muda para '%s'",
                    atual.id, atual.payment_status, novo_pagamento,
                )
                return {}
            campos = {}
            if atual.payment_status != novo_pagamento:
                campos['payment_status'] = novo_pagamento
            if atual.mercado_pago_payment_id != pagamento_id:
                campos['mercado_pago_payment_id'] = pagamento_id
            if atual.status != novo_status and ciclo.pode_transicionar(atual.status, novo_status):
                campos['status'] = novo_status
            if campos:
                logger.info("Webhook: pedido %s atualizado com %s", atual.id, campos)
            return campos

        return self.pedido_repo.atualizar_se(pedido.id, calcular)


# ====================================================================
# 5. ETIQUETA DE ENVIO (saga Melhor Envio)
# ====================================================================

ETAPA_CHECKOUT = 'checkout'
ETAPA_GERAR = 'generate'
ETAPA_IMPRIMIR = 'print'
ETAPA_RASTREIO = 'tracking'
ORDEM_ETAPAS = (ETAPA_CHECKOUT, ETAPA_GERAR, ETAPA_IMPRIMIR, ETAPA_RASTREIO)


class GerarEtiquetaUseCase:
    """
    Saga carrinho -> checkout -> gerar -> imprimir -> rastreio.

    Cada etapa concluída é persistida no pedido (`label_step`), permitindo
    retomar a partir do id do item no carrinho do Melhor Envio após uma queda.
    """

    VOLUME_PADRAO = {'length': 16, 'width': 11, 'height': 3, 'weight': 0.2}

    # Status do envio no Melhor Envio -> próxima etapa da saga
    _RETOMADA = {
        'pending': ETAPA_CHECKOUT,
        'released': ETAPA_GERAR,
        'generated': ETAPA_IMPRIMIR,
        'printed': ETAPA_IMPRIMIR,
        'posted': ETAPA_RASTREIO,
        'delivered': ETAPA_RASTREIO,
    }

    def __init__(self, gateway_frete: IGatewayFrete, pedido_repo: IPedidoRepository, configuracao: ConfiguracaoLoja):
        self.gateway_frete = gateway_frete
        self.pedido_repo = pedido_repo
        self.configuracao = configuracao

    def executar(self, pedido_id: str, service_id=None) -> ResultadoEtiqueta:
        pedido = self._carregar(pedido_id)

        if pedido.tracking_code:
            raise StatusInvalidoError(f"Pedido {pedido.id} já possui código de rastreio.")
        if not ciclo.pagamento_confirmado(pedido.payment_status):
            raise StatusInvalidoError(f"Pedido {pedido.id} ainda não tem pagamento aprovado.")

        if pedido.melhor_envio_id:
            return self._retomar(pedido)

        envio = self.montar_envio(pedido, service_id)
        melhor_envio_id = str(self.gateway_frete.adicionar_ao_carrinho(envio))
        logger.info("Pedido %s adicionado ao carrinho do Melhor Envio: %s", pedido.id, melhor_envio_id)
        pedido = self.pedido_repo.atualizar(
            pedido.id, melhor_envio_id=melhor_envio_id, label_step=EtapaEtiqueta.QUEUED.value,
        )
        return self._executar_a_partir_de(pedido, ETAPA_CHECKOUT)

    def reconciliar(self, pedido_id: str) -> ResultadoEtiqueta:
        """Retoma a saga de um pedido que já tem item no carrinho do Melhor Envio."""
        pedido = self._carregar(pedido_id)
        if not pedido.melhor_envio_id:
            raise DadosInvalidosError(f"Pedido {pedido.id} não possui etiqueta no Melhor Envio.")
        if pedido.tracking_code:
            return ResultadoEtiqueta(
                success=True,
                melhor_envio_id=pedido.melhor_envio_id,
                etapa=EtapaEtiqueta.TRACKED,
                label_url=pedido.label_url,
                tracking_code=pedido.tracking_code,
            )
        return self._retomar(pedido)

    # --- MONTAGEM DO ENVIO ---

    def montar_envio(self, pedido: Pedido, service_id=None) -> Dict[str, Any]:
        servico = service_id or self._servico_do_pedido(pedido)
        if not servico:
            raise DadosInvalidosError("Serviço de frete não encontrado no pedido.")
        documento = self.resolver_documento(pedido)
        if not documento:
            raise DadosInvalidosError("Documento do destinatário não encontrado no pedido/endereço.")

        endereco = pedido.shipping_address
        valor_seguro = float(pedido.total or pedido.subtotal or 0)
        return {
            'service': servico,
            'from': self.configuracao.remetente.to_dict(),
            'to': {
                'name': endereco.name or 'Cliente',
                'phone': endereco.phone or '',
                'email': endereco.email or '',
                'document': documento,
                'address': endereco.street,
                'number': endereco.number,
                'complement': endereco.complement or '',
                'district': endereco.neighborhood,
                'city': endereco.city,
                'state_abbr': endereco.state,
                'postal_code': somente_digitos(endereco.cep),
                'country_id': 'BR',
            },
            'products': [
                {
                    'name': item.product_name or 'Item',
                    'quantity': item.quantity or 1,
                    'unitary_value': float(item.price or 0),
                }
                for item in pedido.itens
            ],
            'volumes': [dict(self.VOLUME_PADRAO, insurance_value=valor_seguro)],
            'options': {
                'insurance_value': valor_seguro,
                'receipt': False,
                'own_hand': False,
                'collect': False,
                'platform': self.configuracao.plataforma,
                # O webhook do Melhor Envio correlaciona o pedido por esta tag.
                'tags': [{'tag': str(pedido.id), 'url': ''}],
                'reminder': f"Pedido {pedido.id}",
            },
        }

    @staticmethod
    def resolver_documento(pedido: Pedido) -> str:
        return somente_digitos(pedido.shipping_address.document)

    @staticmethod
    def _servico_do_pedido(pedido: Pedido):
        servico = pedido.shipping_service
        if servico is None or servico.pickup:
            return None
        return servico.id

    # --- EXECUÇÃO DA SAGA ---

    def _retomar(self, pedido: Pedido) -> ResultadoEtiqueta:
        envio = self.gateway_frete.consultar_envio(pedido.melhor_envio_id)
        status_envio = (envio.get('status') or '').lower()
        if status_envio in ('canceled', 'cancelled', 'expired'):
            raise StatusInvalidoError(
                f"Etiqueta {pedido.melhor_envio_id} está '{status_envio}' no Melhor Envio."
            )
        inicio = self._RETOMADA.get(status_envio, ETAPA_CHECKOUT)
        if inicio == ETAPA_RASTREIO and not pedido.label_url:
            inicio = ETAPA_IMPRIMIR
        elif status_envio == 'printed' and pedido.label_url:
            # Já impressa antes: só falta o rastreio.
            inicio = ETAPA_RASTREIO
        logger.info(
            "Retomando etiqueta %s do pedido %s (status '%s') a partir de '%s'",
            pedido.melhor_envio_id, pedido.id, status_envio, inicio,
        )
        return self._executar_a_partir_de(pedido, inicio)

    def _executar_a_partir_de(self, pedido: Pedido, inicio: str) -> ResultadoEtiqueta:
        melhor_envio_id = pedido.melhor_envio_id
        pendentes = ORDEM_ETAPAS[ORDEM_ETAPAS.index(inicio):]

        if ETAPA_CHECKOUT in pendentes:
            try:
                self.gateway_frete.comprar(melhor_envio_id)
            except (ProvedorRecusouError, ProvedorIndisponivelError) as e:
                # Provável saldo insuficiente: fica como rascunho para pagar no painel.
                logger.warning("Checkout da etiqueta %s não concluído: %s", melhor_envio_id, e)
                self.pedido_repo.atualizar(pedido.id, label_step=EtapaEtiqueta.DRAFTED.value)
                return ResultadoEtiqueta(
                    success=False,
                    draft=True,
                    melhor_envio_id=melhor_envio_id,
                    etapa=EtapaEtiqueta.DRAFTED,
                    message=(
                        "Checkout não concluído (provável saldo insuficiente). "
                        "Pague/gerencie esta etiqueta no painel do Melhor Envio."
                    ),
                )
            self.pedido_repo.atualizar(pedido.id, label_step=EtapaEtiqueta.PURCHASED.value)

        label_url = pedido.label_url
        tracking_code = None
        etapa = inicio
        try:
            for etapa in pendentes:
                if etapa == ETAPA_GERAR:
                    self.gateway_frete.gerar(melhor_envio_id)
                    self.pedido_repo.atualizar(pedido.id, label_step=EtapaEtiqueta.GENERATED.value)
                elif etapa == ETAPA_IMPRIMIR:
                    label_url = self.gateway_frete.imprimir(melhor_envio_id)
                    if not label_url:
                        raise ProvedorRecusouError("Melhor Envio não retornou a URL da etiqueta.")
                    self.pedido_repo.atualizar(
                        pedido.id, label_step=EtapaEtiqueta.PRINTED.value, label_url=label_url,
                    )
                elif etapa == ETAPA_RASTREIO:
                    tracking_code = self.gateway_frete.rastrear(melhor_envio_id)
        except (ProvedorRecusouError, ProvedorIndisponivelError) as e:
            logger.error("Etiqueta %s comprada, mas a etapa '%s' falhou: %s", melhor_envio_id, etapa, e)
            self.pedido_repo.atualizar(
                pedido.id, label_step=EtapaEtiqueta.FAILED.value, label_failed_step=etapa,
            )
            raise EtiquetaNaoRecuperavelError(melhor_envio_id, etapa) from e

        if not tracking_code:
            # Etiqueta impressa; o rastreio chega depois pelo webhook do Melhor Envio.
            self.pedido_repo.atualizar(
                pedido.id, label_step=EtapaEtiqueta.PRINTED.value, label_failed_step=None,
            )
            logger.info("Etiqueta do pedido %s impressa, ainda sem código de rastreio", pedido.id)
            return ResultadoEtiqueta(
                success=True,
                melhor_envio_id=melhor_envio_id,
                etapa=EtapaEtiqueta.PRINTED,
                label_url=label_url,
                message="Etiqueta gerada. O código de rastreio ainda não foi disponibilizado.",
            )

        def calcular(atual: Pedido) -> Dict[str, Any]:
            campos = {
                'tracking_code': tracking_code,
                'label_step': EtapaEtiqueta.TRACKED.value,
                'label_failed_step': None,
            }
            if ciclo.pode_transicionar(atual.status, ciclo.ENVIADO):
                campos['status'] = ciclo.ENVIADO
            else:
                logger.warning("Pedido %s com status '%s' não avança para enviado", atual.id, atual.status)
            return campos

        self.pedido_repo.atualizar_se(pedido.id, calcular)
        logger.info("Etiqueta do pedido %s gerada. Rastreio: %s", pedido.id, tracking_code)

        return ResultadoEtiqueta(
            success=True,
            melhor_envio_id=melhor_envio_id,
            etapa=EtapaEtiqueta.TRACKED,
            label_url=label_url,
            tracking_code=tracking_code,
        )

    def _carregar(self, pedido_id: str) -> Pedido:
        pedido = self.pedido_repo.buscar_por_id(pedido_id)
        if not pedido:
            raise PedidoNaoEncontradoError(f"Pedido {pedido_id} não encontrado.")
        return pedido


# ====================================================================
# 6. WEBHOOK DE FRETE (Melhor Envio)
# ====================================================================

class ProcessarWebhookFreteUseCase:
    """
    Aplica atualizações de rastreio/status do Melhor Envio.
    O pedido é identificado pela tag definida na criação da etiqueta;
    somente os campos presentes no evento são gravados.
    """
    def __init__(self, pedido_repo: IPedidoRepository):
        self.pedido_repo = pedido_repo

    @staticmethod
    def extrair_pedido_id(dados: Any) -> Optional[str]:
        if not isinstance(dados, dict) or not isinstance(dados.get('data'), dict):
            return None
        for tag in dados['data'].get('tags') or []:
            valor = tag.get('tag') if isinstance(tag, dict) else None
            if not valor:
                continue
            try:
                return str(uuid.UUID(str(valor).strip()))
            except ValueError:
                logger.info("Tag ignorada no webhook do Melhor Envio: %r", valor)
        return None

    def executar(self, dados: Any) -> Optional[Pedido]:
        pedido_id = self.extrair_pedido_id(dados)
        if not pedido_id:
            return None

        corpo = dados['data']
        evento = {}
        tracking = corpo.get('tracking') or corpo.get('self_tracking')
        if tracking:
            evento['tracking_code'] = tracking
        if corpo.get('status'):
            evento['shipping_status'] = corpo['status']
        if not evento:
            return None

        def calcular(atual: Pedido) -> Dict[str, Any]:
            campos = dict(evento)
            if tracking and atual.label_step == EtapaEtiqueta.PRINTED.value:
                # Etiqueta impressa sem rastreio: o evento conclui a saga.
                campos['label_step'] = EtapaEtiqueta.TRACKED.value
                if ciclo.pode_transicionar(atual.status, ciclo.ENVIADO):
                    campos['status'] = ciclo.ENVIADO
            logger.info("Webhook Melhor Envio (%s): pedido %s <- %s", dados.get('event'), atual.id, campos)
            return campos

        pedido = self.pedido_repo.atualizar_se(pedido_id, calcular)
        if pedido is None:
            logger.warning("Webhook Melhor Envio: pedido %s não encontrado", pedido_id)
        return pedido


# ====================================================================
# 7. CASOS DE USO ADMINISTRATIVOS / CONSULTA
# ====================================================================

class DetalharPedidoUseCase:
    def __init__(self, pedido_repo: IPedidoRepository):
        self.pedido_repo = pedido_repo

    def executar(self, pedido_id: str) -> Pedido:
        pedido = self.pedido_repo.buscar_por_id(pedido_id)
        if not pedido:
            raise PedidoNaoEncontradoError(f"Pedido {pedido_id} não encontrado.")
        return pedido


class AtualizarStatusPedidoUseCase:
    """Avanço manual do atendimento pelo operador (respeita o ciclo de vida)."""
    def __init__(self, pedido_repo: IPedidoRepository):
        self.pedido_repo = pedido_repo

    def executar(self, pedido_id: str, novo_status: str) -> Pedido:
        novo_status = (novo_status or '').strip().lower()

        def calcular(atual: Pedido) -> Dict[str, Any]:
            ciclo.validar_transicao(atual.status, novo_status)
            return {} if atual.status == novo_status else {'status': novo_status}

        pedido = self.pedido_repo.atualizar_se(pedido_id, calcular)
        if not pedido:
            raise PedidoNaoEncontradoError(f"Pedido {pedido_id} não encontrado.")
        return pedido
