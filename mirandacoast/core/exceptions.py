class BaseErroCore(Exception):
    """Classe base para todas as exceções da Camada Core."""
    pass

class DadosInvalidosError(BaseErroCore):
    """Erro levantado quando dados inválidos são fornecidos (antes de qualquer chamada externa)."""
    def __init__(self, message="Os dados fornecidos são inválidos."):
        self.message = message
        super().__init__(self.message)

class ConfiguracaoAusenteError(BaseErroCore):
    """Credencial ou segredo obrigatório não configurado."""
    def __init__(self, message="Configuração obrigatória ausente."):
        self.message = message
        super().__init__(self.message)

# ===============================================
# ERROS DE PERSISTÊNCIA E ENTIDADE
# ===============================================

class PedidoNaoEncontradoError(BaseErroCore):
    """Erro específico para Pedidos não encontrados."""
    def __init__(self, message="O pedido solicitado não foi encontrado."):
        self.message = message
        super().__init__(self.message)

class StatusInvalidoError(BaseErroCore):
    """Erro levantado ao tentar uma transição de status não permitida."""
    def __init__(self, message="O status fornecido não é válido para este pedido."):
        self.message = message
        super().__init__(self.message)

class ItensPedidoError(BaseErroCore):
    """
    O pedido foi criado, mas a inserção dos itens falhou.
    O pedido permanece pendente para reconciliação manual.
    """
    def __init__(self, pedido_id: str, message=None):
        self.pedido_id = pedido_id
        self.message = message or (
            f"Pedido {pedido_id} criado, mas houve erro ao adicionar os itens."
        )
        super().__init__(self.message)

# ===============================================
# ERROS DE PROVEDORES EXTERNOS (Mercado Pago / Melhor Envio)
# ===============================================

class ProvedorRecusouError(BaseErroCore):
    """O provedor externo recusou explicitamente a operação."""
    def __init__(self, message="O provedor recusou a operação.", status_code: int = 400, detalhes=None):
        self.message = message
        self.status_code = status_code
        self.detalhes = detalhes
        super().__init__(self.message)

class PagamentoRecusadoError(ProvedorRecusouError):
    """Pagamento com status 'rejected' no processador."""
    def __init__(self, status_detail: str = None, pagamento_id=None):
        self.status_detail = status_detail
        self.pagamento_id = pagamento_id
        super().__init__(
            f"Pagamento rejeitado: {status_detail}" if status_detail else "Pagamento rejeitado.",
            status_code=402,
            detalhes={"status_detail": status_detail, "id": pagamento_id},
        )

class ProvedorIndisponivelError(BaseErroCore):
    """Falha de transporte ou 5xx de uma dependência externa."""
    def __init__(self, message="Serviço externo indisponível. Tente novamente."):
        self.message = message
        super().__init__(self.message)

class FreteIndisponivelError(ProvedorIndisponivelError):
    """A cotação de frete não pôde ser obtida."""
    def __init__(self, message="Não foi possível calcular o frete. Tente novamente."):
        super().__init__(message)

class EtiquetaNaoRecuperavelError(BaseErroCore):
    """
    A etiqueta foi comprada no Melhor Envio, mas não pôde ser gerada/impressa/rastreada.
    Diferente do rascunho (saldo insuficiente): aqui o dinheiro já foi gasto.
    """
    def __init__(self, melhor_envio_id: str, etapa: str, message=None):
        self.melhor_envio_id = melhor_envio_id
        self.etapa = etapa
        self.message = message or (
            f"Etiqueta {melhor_envio_id} comprada, mas a etapa '{etapa}' falhou."
        )
        super().__init__(self.message)
