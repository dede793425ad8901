"""
Ciclo de vida do pedido.

Dois eixos independentes: `status` (atendimento) e `payment_status`
(pagamento). Cada eixo só muda pelas transições listadas aqui.
"""
from mirandacoast.core.exceptions import StatusInvalidoError

# Eixo de atendimento
PENDENTE = 'pending'
CONFIRMADO = 'confirmed'
PROCESSANDO = 'processing'
ENVIADO = 'shipped'
ENTREGUE = 'delivered'
CANCELADO = 'cancelled'
FALHOU = 'failed'

STATUS_VALIDOS = [PENDENTE, CONFIRMADO, PROCESSANDO, ENVIADO, ENTREGUE, CANCELADO, FALHOU]

TRANSICOES = {
    PENDENTE: {CONFIRMADO, PROCESSANDO, ENVIADO, CANCELADO, FALHOU},
    CONFIRMADO: {PROCESSANDO, ENVIADO, CANCELADO},
    PROCESSANDO: {ENVIADO, CANCELADO},
    ENVIADO: {ENTREGUE, CANCELADO},
    FALHOU: {PENDENTE, CONFIRMADO, CANCELADO},
    ENTREGUE: set(),
    CANCELADO: set(),
}

# Eixo de pagamento
PAGAMENTO_PENDENTE = 'pending'
PAGAMENTO_APROVADO = 'approved'
PAGAMENTO_REJEITADO = 'rejected'
PAGAMENTO_PAGO = 'paid'
PAGAMENTO_FALHOU = 'failed'

PAGAMENTO_VALIDOS = [
    PAGAMENTO_PENDENTE, PAGAMENTO_APROVADO, PAGAMENTO_REJEITADO, PAGAMENTO_PAGO, PAGAMENTO_FALHOU,
]

# 'paid' é final: eventos atrasados de tentativas anteriores não rebaixam o pedido.
TRANSICOES_PAGAMENTO = {
    PAGAMENTO_PENDENTE: {PAGAMENTO_APROVADO, PAGAMENTO_REJEITADO, PAGAMENTO_PAGO, PAGAMENTO_FALHOU},
    PAGAMENTO_APROVADO: {PAGAMENTO_PAGO, PAGAMENTO_FALHOU},
    PAGAMENTO_REJEITADO: {PAGAMENTO_PENDENTE, PAGAMENTO_APROVADO, PAGAMENTO_PAGO, PAGAMENTO_FALHOU},
    PAGAMENTO_FALHOU: {PAGAMENTO_PENDENTE, PAGAMENTO_APROVADO, PAGAMENTO_REJEITADO, PAGAMENTO_PAGO},
    PAGAMENTO_PAGO: set(),
}


def pode_transicionar(atual: str, novo: str) -> bool:
    """Mesmo status é sempre aceito (atualizações idempotentes)."""
    if atual == novo:
        return True
    return novo in TRANSICOES.get(atual, set())


def validar_transicao(atual: str, novo: str) -> None:
    if novo not in STATUS_VALIDOS:
        raise StatusInvalidoError(f"O status '{novo}' não é um status de pedido válido.")
    if not pode_transicionar(atual, novo):
        raise StatusInvalidoError(f"Transição de '{atual}' para '{novo}' não é permitida.")


def pagamento_pode_mudar(atual: str, novo: str) -> bool:
    if atual == novo:
        return True
    return novo in TRANSICOES_PAGAMENTO.get(atual, set())


def pagamento_confirmado(payment_status: str) -> bool:
    return payment_status in (PAGAMENTO_APROVADO, PAGAMENTO_PAGO)
