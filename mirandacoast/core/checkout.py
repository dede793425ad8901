# mirandacoast/core/checkout.py
"""
Orquestrador do checkout em três etapas: endereço -> frete -> pagamento.

O estado (`SessaoCheckout`) é serializável em JSON para ficar na sessão do
Django. O pedido é criado uma única vez; um `pedido_id` retido de uma tentativa
anterior é reutilizado nas novas tentativas de pagamento enquanto o carrinho,
o endereço e o frete da sessão continuarem os mesmos do pedido.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Dict, Any

from mirandacoast.core import status as ciclo
from mirandacoast.core.entities import (
    Endereco, ItemPedido, OpcaoFrete, ItemPagamento, Pagador,
    SolicitacaoCobrancaDireta, ResultadoPagamento, Pedido, somente_digitos,
)
from mirandacoast.core.exceptions import DadosInvalidosError, ItensPedidoError, StatusInvalidoError
from mirandacoast.core.ports import IPedidoRepository
from mirandacoast.core.use_cases import (
    CotarFreteUseCase, CriarPedidoUseCase, CriarPagamentoUseCase, METODO_PIX, METODO_BOLETO, METODO_CARTAO,
)

logger = logging.getLogger(__name__)

ETAPA_ENDERECO = 'endereco'
ETAPA_FRETE = 'frete'
ETAPA_PAGAMENTO = 'pagamento'
ETAPAS = (ETAPA_ENDERECO, ETAPA_FRETE, ETAPA_PAGAMENTO)

METODOS = (METODO_PIX, METODO_BOLETO, METODO_CARTAO)


@dataclass
class SessaoCheckout:
    etapa: str = ETAPA_ENDERECO
    itens: List[ItemPedido] = field(default_factory=list)
    endereco: Optional[Endereco] = None
    opcoes: List[OpcaoFrete] = field(default_factory=list)
    frete: Optional[OpcaoFrete] = None
    pedido_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'etapa': self.etapa,
            'itens': [item.to_dict() for item in self.itens],
            'endereco': self.endereco.to_dict() if self.endereco else None,
            'opcoes': [opcao.to_dict() for opcao in self.opcoes],
            'frete': self.frete.to_dict() if self.frete else None,
            'pedido_id': self.pedido_id,
        }

    @classmethod
    def from_dict(cls, dados: Optional[Dict[str, Any]]) -> 'SessaoCheckout':
        if not dados:
            return cls()
        etapa = dados.get('etapa')
        return cls(
            etapa=etapa if etapa in ETAPAS else ETAPA_ENDERECO,
            itens=[ItemPedido(**item) for item in dados.get('itens') or []],
            endereco=Endereco.from_dict(dados['endereco']) if dados.get('endereco') else None,
            opcoes=[OpcaoFrete.from_dict(opcao) for opcao in dados.get('opcoes') or []],
            frete=OpcaoFrete.from_dict(dados['frete']) if dados.get('frete') else None,
            pedido_id=dados.get('pedido_id'),
        )


@dataclass
class ResultadoCheckout:
    pedido_id: str
    pagamento: ResultadoPagamento

    def to_dict(self) -> Dict[str, Any]:
        return {'order_id': self.pedido_id, 'payment': self.pagamento.to_dict()}


class CheckoutUseCase:
    def __init__(
        self,
        cotar_frete: CotarFreteUseCase,
        criar_pedido: CriarPedidoUseCase,
        criar_pagamento: CriarPagamentoUseCase,
        pedido_repo: IPedidoRepository,
    ):
        self.cotar_frete = cotar_frete
        self.criar_pedido = criar_pedido
        self.criar_pagamento = criar_pagamento
        self.pedido_repo = pedido_repo

    # --- ETAPA 1: ENDEREÇO ---

    def confirmar_endereco(self, sessao: SessaoCheckout, endereco: Endereco, itens: List[ItemPedido]) -> SessaoCheckout:
        if not itens:
            raise DadosInvalidosError("Seu carrinho está vazio.")
        faltantes = endereco.campos_faltantes()
        if faltantes:
            raise DadosInvalidosError(f"Preencha o endereço completo. Faltando: {', '.join(faltantes)}.")
        if len(somente_digitos(endereco.document)) < 11:
            raise DadosInvalidosError("Informe um CPF ou CNPJ válido.")

        produtos = [{'quantity': item.quantity} for item in itens]
        # Se a cotação falhar a exceção sobe e a sessão continua na etapa de endereço.
        opcoes = self.cotar_frete.executar(endereco.cep, produtos)

        sessao.itens = list(itens)
        sessao.endereco = endereco
        sessao.opcoes = opcoes
        sessao.frete = next((opcao for opcao in opcoes if not opcao.pickup), opcoes[0] if opcoes else None)
        sessao.etapa = ETAPA_FRETE
        return sessao

    # --- ETAPA 2: FRETE ---

    def selecionar_frete(self, sessao: SessaoCheckout, opcao_id) -> SessaoCheckout:
        if sessao.etapa == ETAPA_ENDERECO:
            raise StatusInvalidoError("Confirme o endereço antes de escolher o frete.")
        opcao = next((o for o in sessao.opcoes if str(o.id) == str(opcao_id)), None)
        if opcao is None:
            raise DadosInvalidosError("Selecione uma opção de frete válida.")
        sessao.frete = opcao
        sessao.etapa = ETAPA_PAGAMENTO
        return sessao

    def voltar(self, sessao: SessaoCheckout) -> SessaoCheckout:
        indice = ETAPAS.index(sessao.etapa)
        if indice > 0:
            sessao.etapa = ETAPAS[indice - 1]
        return sessao

    # --- ETAPA 3: PAGAMENTO ---

    def finalizar(
        self,
        sessao: SessaoCheckout,
        pagador: Pagador,
        metodo: str,
        cartao: Optional[Dict[str, Any]] = None,
        usuario_id: Optional[int] = None,
    ) -> ResultadoCheckout:
        """
        Cria (ou reaproveita) o pedido e a cobrança direta.
        Em caso de erro a sessão mantém o `pedido_id` para a próxima tentativa.
        """
        if sessao.etapa != ETAPA_PAGAMENTO or sessao.frete is None or sessao.endereco is None:
            raise StatusInvalidoError("Conclua as etapas de endereço e frete antes do pagamento.")
        self._validar_pagador(pagador, metodo, cartao)

        pedido = self._obter_pedido(sessao, usuario_id)
        if not pagador.address:
            pagador.address = self._endereco_pagador(sessao.endereco)

        if metodo == METODO_PIX:
            payment_method_id = 'pix'
        elif metodo == METODO_BOLETO:
            payment_method_id = 'bolbradesco'
        else:
            payment_method_id = cartao['payment_method_id']

        solicitacao = SolicitacaoCobrancaDireta(
            itens=[
                ItemPagamento(
                    id=str(item.product_id),
                    title=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.price,
                    picture_url=item.product_image,
                    description=self._descricao(item),
                )
                for item in pedido.itens
            ],
            pagador=pagador,
            external_reference=pedido.id,
            shipping_cost=pedido.shipping_cost,
            payment_method_id=payment_method_id,
            token=(cartao or {}).get('token') if metodo == METODO_CARTAO else None,
            installments=int((cartao or {}).get('installments') or 1) if metodo == METODO_CARTAO else None,
        )
        resultado = self.criar_pagamento.executar(solicitacao)
        logger.info("Checkout do pedido %s concluído (pagamento %s)", pedido.id, resultado.id)
        return ResultadoCheckout(pedido_id=pedido.id, pagamento=resultado)

    def _obter_pedido(self, sessao: SessaoCheckout, usuario_id: Optional[int]) -> Pedido:
        if sessao.pedido_id:
            pedido = self.pedido_repo.buscar_por_id(sessao.pedido_id)
            if pedido is not None:
                if ciclo.pagamento_confirmado(pedido.payment_status):
                    raise StatusInvalidoError(f"O pedido {pedido.id} já foi pago.")
                if self._pedido_confere(pedido, sessao):
                    logger.info("Reutilizando pedido %s da tentativa anterior", pedido.id)
                    return self.criar_pedido.completar_itens(pedido, sessao.itens)
                # O pedido antigo fica pendente: um pagamento dele ainda pode ser aprovado.
                logger.warning(
                    "Carrinho, endereço ou frete mudaram desde o pedido %s; criando outro", pedido.id,
                )
            else:
                logger.warning("Pedido %s da sessão não existe mais; criando outro", sessao.pedido_id)
            sessao.pedido_id = None

        try:
            pedido = self.criar_pedido.executar(sessao.itens, sessao.endereco, sessao.frete, usuario_id)
        except ItensPedidoError as e:
            sessao.pedido_id = e.pedido_id
            raise
        sessao.pedido_id = pedido.id
        return pedido

    @staticmethod
    def _pedido_confere(pedido: Pedido, sessao: SessaoCheckout) -> bool:
        """O pedido retido só serve se valores, frete, endereço e itens ainda batem com a sessão."""
        subtotal = sum((item.subtotal for item in sessao.itens), Decimal('0.00'))
        if pedido.subtotal != subtotal or pedido.shipping_cost != sessao.frete.price:
            return False
        if pedido.shipping_service is None or str(pedido.shipping_service.id) != str(sessao.frete.id):
            return False
        if Endereco.from_dict(pedido.shipping_address.to_dict()) != Endereco.from_dict(sessao.endereco.to_dict()):
            return False
        if not pedido.itens:
            # Itens ainda não gravados: completar_itens insere os da sessão.
            return True

        def chave(item: ItemPedido):
            return (str(item.product_id), item.quantity, item.price, item.size or '', item.color or '')

        return sorted(map(chave, pedido.itens)) == sorted(map(chave, sessao.itens))

    @staticmethod
    def _validar_pagador(pagador: Pagador, metodo: str, cartao: Optional[Dict[str, Any]]) -> None:
        if metodo not in METODOS:
            raise DadosInvalidosError(f"Método de pagamento inválido: {metodo!r}.")
        faltantes = [
            nome for nome, valor in (
                ('nome', pagador.first_name),
                ('sobrenome', pagador.last_name),
                ('email', pagador.email),
                ('documento', pagador.document),
            ) if not str(valor or '').strip()
        ]
        if faltantes:
            raise DadosInvalidosError(f"Preencha os dados do pagador: {', '.join(faltantes)}.")
        if metodo == METODO_CARTAO and (not cartao or not cartao.get('token') or not cartao.get('payment_method_id')):
            raise DadosInvalidosError("Não foi possível validar o cartão. Confira os dados e tente novamente.")

    @staticmethod
    def _endereco_pagador(endereco: Endereco) -> Dict[str, Any]:
        return {
            'zip_code': endereco.cep,
            'street_name': endereco.street,
            'street_number': endereco.number,
            'neighborhood': endereco.neighborhood,
            'city': endereco.city,
            'federal_unit': endereco.state,
        }

    @staticmethod
    def _descricao(item: ItemPedido) -> Optional[str]:
        partes = []
        if item.size:
            partes.append(f"Tam: {item.size}")
        if item.color:
            partes.append(f"Cor: {item.color}")
        return ' | '.join(partes) or None
