import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from mirandacoast.core import dependency_injection as di
from mirandacoast.core.exceptions import (
    BaseErroCore,
    ConfiguracaoAusenteError,
    DadosInvalidosError,
    EtiquetaNaoRecuperavelError,
    ItensPedidoError,
    PagamentoRecusadoError,
    PedidoNaoEncontradoError,
    ProvedorIndisponivelError,
    ProvedorRecusouError,
    StatusInvalidoError,
)
from mirandacoast.core.use_cases import MENSAGEM_CAMPOS_OBRIGATORIOS, montar_solicitacao

from .checkout_manager import CheckoutManager
from .serializers import (
    CotacaoFreteSerializer,
    OpcaoFreteSerializer,
    PagamentoSerializer,
    EtiquetaSerializer,
    StatusPedidoSerializer,
    PedidoSerializer,
    EnderecoCheckoutSerializer,
    FreteCheckoutSerializer,
    PagamentoCheckoutSerializer,
)

logger = logging.getLogger(__name__)


# ====================================================================
# VIEWS: Orquestram a requisição, a execução dos casos de uso e a resposta.
# ====================================================================

def resposta_de_erro(erro: BaseErroCore) -> Response:
    """Traduz as exceções do Core para respostas HTTP."""
    if isinstance(erro, PagamentoRecusadoError):
        return Response(
            {'error': erro.message, 'status_detail': erro.status_detail, 'id': erro.pagamento_id},
            status=status.HTTP_402_PAYMENT_REQUIRED,
        )
    if isinstance(erro, ProvedorRecusouError):
        return Response(
            {'error': erro.message, 'details': erro.detalhes, 'status': erro.status_code},
            status=erro.status_code,
        )
    if isinstance(erro, DadosInvalidosError):
        return Response({'error': erro.message}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(erro, PedidoNaoEncontradoError):
        return Response({'error': erro.message}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(erro, StatusInvalidoError):
        return Response({'error': erro.message}, status=status.HTTP_409_CONFLICT)
    if isinstance(erro, EtiquetaNaoRecuperavelError):
        return Response(
            {'error': erro.message, 'melhor_envio_id': erro.melhor_envio_id, 'step': erro.etapa},
            status=status.HTTP_502_BAD_GATEWAY,
        )
    if isinstance(erro, ProvedorIndisponivelError):
        return Response({'error': erro.message}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(erro, ItensPedidoError):
        return Response(
            {'error': erro.message, 'order_id': erro.pedido_id},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(erro, ConfiguracaoAusenteError):
        logger.error("Configuração ausente: %s", erro.message)
    return Response({'error': str(erro)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _erro_de_validacao(serializer, mensagem: str = None) -> Response:
    return Response(
        {'error': mensagem or 'Dados inválidos.', 'details': serializer.errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


# ====================================================================
# 1. FRETE
# ====================================================================

class CotarFreteView(APIView):
    """Cotação de frete para o carrinho (Correios PAC/SEDEX + retirada na loja)."""
    permission_classes = [AllowAny]

    @extend_schema(request=CotacaoFreteSerializer)
    def post(self, request):
        serializer = CotacaoFreteSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer)
        dados = serializer.validated_data

        try:
            opcoes = di.get_cotar_frete_use_case().executar(
                cep_destino=dados['to_postal_code'],
                produtos=dados.get('products') or [],
                cep_origem=dados.get('from_postal_code') or None,
            )
        except BaseErroCore as e:
            return resposta_de_erro(e)

        return Response({'options': OpcaoFreteSerializer(opcoes, many=True).data}, status=status.HTTP_200_OK)


# ====================================================================
# 2. PAGAMENTO
# ====================================================================

class CriarPagamentoView(APIView):
    """Cria a preferência (sem `payment_method_id`) ou a cobrança direta (Pix, boleto, cartão)."""
    permission_classes = [IsAuthenticated]

    @extend_schema(request=PagamentoSerializer)
    def post(self, request):
        serializer = PagamentoSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer, MENSAGEM_CAMPOS_OBRIGATORIOS)

        try:
            solicitacao = montar_solicitacao(serializer.validated_data)
            resultado = di.get_criar_pagamento_use_case().executar(solicitacao)
        except BaseErroCore as e:
            return resposta_de_erro(e)

        return Response(resultado.to_dict(), status=status.HTTP_200_OK)


class WebhookMercadoPagoView(APIView):
    """
    Notificações do Mercado Pago. Responde sempre 200 para o provedor não
    reenviar indefinidamente; falhas internas ficam no log.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(request=None, responses={200: OpenApiTypes.OBJECT})
    def post(self, request):
        return self._processar(request)

    @extend_schema(request=None, responses={200: OpenApiTypes.OBJECT})
    def get(self, request):
        return self._processar(request)

    def _processar(self, request):
        try:
            di.get_processar_webhook_pagamento_use_case().executar(request.data, request.query_params.dict())
        except Exception:
            logger.exception("Erro ao processar webhook do Mercado Pago")
        return Response({}, status=status.HTTP_200_OK)


# ====================================================================
# 3. ETIQUETAS E RASTREIO (Melhor Envio)
# ====================================================================

class GerarEtiquetaView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=EtiquetaSerializer)
    def post(self, request):
        serializer = EtiquetaSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer)

        service_id = serializer.validated_data.get('service_id') or None
        if service_id and service_id.isdigit():
            service_id = int(service_id)

        try:
            resultado = di.get_gerar_etiqueta_use_case().executar(
                str(serializer.validated_data['order_id']), service_id,
            )
        except BaseErroCore as e:
            return resposta_de_erro(e)

        return Response(resultado.to_dict(), status=status.HTTP_200_OK)


class ReconciliarEtiquetaView(APIView):
    """Retoma a saga de uma etiqueta a partir do estado informado pelo Melhor Envio."""
    permission_classes = [IsAdminUser]

    @extend_schema(request=None)
    def post(self, request, pedido_id):
        try:
            resultado = di.get_gerar_etiqueta_use_case().reconciliar(str(pedido_id))
        except BaseErroCore as e:
            return resposta_de_erro(e)
        return Response(resultado.to_dict(), status=status.HTTP_200_OK)


class WebhookMelhorEnvioView(APIView):
    """Eventos de rastreio do Melhor Envio. GET e corpo vazio respondem sucesso (teste de conectividade)."""
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(request=None, responses={200: OpenApiTypes.OBJECT})
    def get(self, request):
        return Response({'success': True}, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: OpenApiTypes.OBJECT})
    def post(self, request):
        try:
            di.get_processar_webhook_frete_use_case().executar(request.data)
        except Exception:
            logger.exception("Erro ao processar webhook do Melhor Envio")
        return Response({'success': True}, status=status.HTTP_200_OK)


# ====================================================================
# 4. PEDIDOS
# ====================================================================

class DetalhePedidoView(APIView):
    """Detalhe do pedido para o dono ou para a equipe."""
    permission_classes = [IsAuthenticated]

    @extend_schema(responses=PedidoSerializer)
    def get(self, request, pedido_id):
        try:
            pedido = di.get_detalhar_pedido_use_case().executar(str(pedido_id))
        except BaseErroCore as e:
            return resposta_de_erro(e)

        if not request.user.is_staff and pedido.usuario_id != request.user.id:
            # Não revela a existência de pedidos de outros clientes
            return Response({'error': 'Pedido não encontrado.'}, status=status.HTTP_404_NOT_FOUND)
        return Response(PedidoSerializer(pedido).data, status=status.HTTP_200_OK)


class AtualizarStatusPedidoView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=StatusPedidoSerializer, responses=PedidoSerializer)
    def patch(self, request, pedido_id):
        serializer = StatusPedidoSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer)
        try:
            pedido = di.get_atualizar_status_pedido_use_case().executar(
                str(pedido_id), serializer.validated_data['status'],
            )
        except BaseErroCore as e:
            return resposta_de_erro(e)
        return Response(PedidoSerializer(pedido).data, status=status.HTTP_200_OK)


# ====================================================================
# 5. CHECKOUT EM ETAPAS (estado na sessão)
# ====================================================================

class CheckoutView(APIView):
    """Estado atual do checkout (etapa, endereço, opções de frete)."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CheckoutManager(request).sessao.to_dict(), status=status.HTTP_200_OK)


class CheckoutEnderecoView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=EnderecoCheckoutSerializer)
    def post(self, request):
        serializer = EnderecoCheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer, 'Preencha o endereço completo.')

        manager = CheckoutManager(request)
        try:
            di.get_checkout_use_case().confirmar_endereco(
                manager.sessao, serializer.to_endereco(), serializer.to_itens(),
            )
        except BaseErroCore as e:
            return resposta_de_erro(e)

        manager.salvar()
        return Response(manager.sessao.to_dict(), status=status.HTTP_200_OK)


class CheckoutFreteView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=FreteCheckoutSerializer)
    def post(self, request):
        serializer = FreteCheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer, 'Selecione uma opção de frete.')

        manager = CheckoutManager(request)
        try:
            di.get_checkout_use_case().selecionar_frete(manager.sessao, serializer.validated_data['option_id'])
        except BaseErroCore as e:
            return resposta_de_erro(e)

        manager.salvar()
        return Response(manager.sessao.to_dict(), status=status.HTTP_200_OK)


class CheckoutVoltarView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=None)
    def post(self, request):
        manager = CheckoutManager(request)
        di.get_checkout_use_case().voltar(manager.sessao)
        manager.salvar()
        return Response(manager.sessao.to_dict(), status=status.HTTP_200_OK)


class CheckoutPagamentoView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=PagamentoCheckoutSerializer)
    def post(self, request):
        serializer = PagamentoCheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            return _erro_de_validacao(serializer, 'Preencha os dados do pagador.')

        manager = CheckoutManager(request)
        try:
            resultado = di.get_checkout_use_case().finalizar(
                manager.sessao,
                serializer.to_pagador(),
                serializer.validated_data['method'],
                cartao=serializer.to_cartao(),
                usuario_id=request.user.id,
            )
        except BaseErroCore as e:
            # Mantém o pedido_id para a próxima tentativa reaproveitar o mesmo pedido
            manager.salvar()
            return resposta_de_erro(e)

        manager.limpar()
        return Response(resultado.to_dict(), status=status.HTTP_201_CREATED)
