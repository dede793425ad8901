from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any
import uuid

from mirandacoast.core.exceptions import DadosInvalidosError

# ====================================================================
# ENTIDADES CORE
# Representam os objetos de negócio puros. Os nomes dos campos seguem
# o contrato de dados (JSON das APIs e snapshots persistidos).
# ====================================================================

CENTAVOS = Decimal('0.01')


def para_decimal(valor) -> Decimal:
    """Converte valores monetários (str, int, float, Decimal) para Decimal com 2 casas."""
    if valor is None or valor == '':
        raise DadosInvalidosError("Valor monetário ausente.")
    if isinstance(valor, bool):
        raise DadosInvalidosError(f"Valor monetário inválido: {valor!r}")
    try:
        return Decimal(str(valor)).quantize(CENTAVOS, rounding=ROUND_HALF_UP)
    except ArithmeticError:
        raise DadosInvalidosError(f"Valor monetário inválido: {valor!r}")


def somente_digitos(valor) -> str:
    return ''.join(c for c in str(valor or '') if c.isdigit())


@dataclass(frozen=True)
class Endereco:
    """Snapshot do endereço de entrega (imutável após a criação do pedido)."""
    cep: str
    street: str
    number: str
    neighborhood: str
    city: str
    state: str
    complement: str = ''
    name: str = ''
    email: str = ''
    phone: str = ''
    document: str = ''
    document_type: str = 'CPF'

    CAMPOS_OBRIGATORIOS = ('cep', 'street', 'number', 'neighborhood', 'city', 'state')

    def campos_faltantes(self) -> List[str]:
        return [campo for campo in self.CAMPOS_OBRIGATORIOS if not str(getattr(self, campo) or '').strip()]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'Endereco':
        dados = dados or {}
        documento = somente_digitos(
            dados.get('document') or dados.get('cpf') or dados.get('cnpj')
            or dados.get('customer_document') or dados.get('payer_document') or dados.get('payment_document')
        )
        return cls(
            cep=somente_digitos(dados.get('cep') or dados.get('postal_code')),
            street=dados.get('street', ''),
            number=str(dados.get('number', '')),
            neighborhood=dados.get('neighborhood', ''),
            city=dados.get('city', ''),
            state=dados.get('state', ''),
            complement=dados.get('complement') or '',
            name=dados.get('name') or '',
            email=dados.get('email') or '',
            phone=dados.get('phone') or '',
            document=documento,
            document_type=dados.get('document_type') or ('CNPJ' if len(documento) > 11 else 'CPF'),
        )


@dataclass(frozen=True)
class OpcaoFrete:
    """Uma opção de frete cotada (ShippingQuote). Não é persistida sozinha."""
    id: Any
    name: str
    company: str
    price: Decimal
    delivery_time: Optional[int] = None
    delivery_range: Optional[Dict[str, int]] = None
    currency: str = 'BRL'
    pickup: bool = False
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        dados = asdict(self)
        dados['price'] = float(self.price)
        if not self.pickup:
            dados.pop('pickup')
            dados.pop('address')
        return dados

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'OpcaoFrete':
        return cls(
            id=dados.get('id') or dados.get('service_id'),
            name=dados.get('name', ''),
            company=dados.get('company', ''),
            price=para_decimal(dados.get('price', 0)),
            delivery_time=dados.get('delivery_time'),
            delivery_range=dados.get('delivery_range'),
            currency=dados.get('currency', 'BRL'),
            pickup=bool(dados.get('pickup', False)),
            address=dados.get('address'),
        )


@dataclass
class ItemPedido:
    """Snapshot de um item no momento da compra (imutável)."""
    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    product_image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    pedido_id: Optional[str] = None

    def __post_init__(self):
        self.price = para_decimal(self.price)
        if not self.product_name:
            raise DadosInvalidosError("Item sem nome de produto.")
        if int(self.quantity) <= 0:
            raise DadosInvalidosError(f"Quantidade inválida para '{self.product_name}'.")
        if self.price < 0:
            raise DadosInvalidosError(f"Preço negativo para '{self.product_name}'.")
        self.quantity = int(self.quantity)

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        dados = asdict(self)
        dados['price'] = float(self.price)
        return dados


@dataclass
class Pedido:
    """
    Entidade do Pedido (uma tentativa de checkout).

    `total == subtotal + shipping_cost` é verificado na criação; endereço e
    serviço de frete são snapshots e nunca são recalculados.
    """
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
    shipping_address: Endereco
    shipping_service: OpcaoFrete
    status: str = 'pending'
    payment_status: str = 'pending'
    usuario_id: Optional[int] = None
    tracking_code: Optional[str] = None
    shipping_status: Optional[str] = None
    mercado_pago_payment_id: Optional[str] = None
    melhor_envio_id: Optional[str] = None
    label_step: Optional[str] = None
    label_failed_step: Optional[str] = None
    label_url: Optional[str] = None
    itens: List[ItemPedido] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.subtotal = para_decimal(self.subtotal)
        self.shipping_cost = para_decimal(self.shipping_cost)
        self.total = para_decimal(self.total)
        if self.subtotal < 0 or self.shipping_cost < 0:
            raise DadosInvalidosError("Valores do pedido não podem ser negativos.")
        if self.total != self.subtotal + self.shipping_cost:
            raise DadosInvalidosError(
                f"Total {self.total} difere de subtotal {self.subtotal} + frete {self.shipping_cost}."
            )


# ====================================================================
# PAGAMENTO (Mercado Pago)
# ====================================================================

@dataclass
class ItemPagamento:
    id: str
    title: str
    quantity: int
    unit_price: Decimal
    picture_url: Optional[str] = None
    description: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Pagador:
    email: str = ''
    name: str = ''
    first_name: str = ''
    last_name: str = ''
    document: str = ''
    document_type: str = 'CPF'
    address: Dict[str, Any] = field(default_factory=dict)

    @property
    def nome_completo(self) -> str:
        return self.name or f"{self.first_name} {self.last_name}".strip()


@dataclass
class SolicitacaoPagamento:
    """Base comum das duas formas de criação de pagamento."""
    itens: List[ItemPagamento]
    pagador: Pagador
    external_reference: str
    back_urls: Dict[str, str] = field(default_factory=dict)
    shipping_cost: Decimal = Decimal('0.00')


@dataclass
class SolicitacaoPreferencia(SolicitacaoPagamento):
    """Fluxo de preferência: checkout hospedado com URL de redirecionamento."""
    pass


@dataclass
class SolicitacaoCobrancaDireta(SolicitacaoPagamento):
    """Fluxo de cobrança direta: Pix, cartão (token) ou boleto."""
    payment_method_id: str = ''
    token: Optional[str] = None
    installments: Optional[int] = None


@dataclass
class ResultadoPagamento:
    """PaymentIntentResult."""
    id: Optional[str]
    status: Optional[str] = None
    status_detail: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.init_point or self.sandbox_init_point:
            return {
                'id': self.id,
                'init_point': self.init_point,
                'sandbox_init_point': self.sandbox_init_point,
            }
        return {
            'id': self.id,
            'status': self.status,
            'status_detail': self.status_detail,
            'qr_code': self.qr_code,
            'qr_code_base64': self.qr_code_base64,
            'ticket_url': self.ticket_url,
        }


@dataclass
class TransacaoPagamento:
    """Estado de um pagamento consultado no processador (fonte de verdade do webhook)."""
    referencia_externa: Optional[str]
    pagamento_id: str
    status: Optional[str]
    status_detail: Optional[str] = None


# ====================================================================
# ETIQUETA (Melhor Envio)
# ====================================================================

class EtapaEtiqueta(str, Enum):
    QUEUED = 'queued'
    DRAFTED = 'drafted'
    PURCHASED = 'purchased'
    GENERATED = 'generated'
    PRINTED = 'printed'
    TRACKED = 'tracked'
    FAILED = 'failed'


@dataclass
class ResultadoEtiqueta:
    success: bool
    melhor_envio_id: Optional[str]
    etapa: EtapaEtiqueta
    label_url: Optional[str] = None
    tracking_code: Optional[str] = None
    draft: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        dados = {
            'success': self.success,
            'label_url': self.label_url,
            'tracking_code': self.tracking_code,
            'melhor_envio_id': self.melhor_envio_id,
            'step': self.etapa.value,
        }
        if self.draft:
            dados['draft'] = True
        if self.message:
            dados['message'] = self.message
        return dados
