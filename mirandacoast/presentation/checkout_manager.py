# mirandacoast/presentation/checkout_manager.py
# Gerencia a persistência do estado do Checkout na sessão do Django.

from django.http import HttpRequest

from mirandacoast.core.checkout import SessaoCheckout


class CheckoutManager:
    """
    Carrega e salva a `SessaoCheckout` na sessão do Django, permitindo que o
    checkout em etapas (e o `pedido_id` de uma tentativa anterior) sobreviva
    entre requisições.
    """

    SESSION_KEY = 'checkout_mirandacoast'

    def __init__(self, request: HttpRequest):
        self.request = request
        self.sessao: SessaoCheckout = self._load_from_session()

    # --- Métodos de Persistência ---

    def _load_from_session(self) -> SessaoCheckout:
        """Se não existir estado salvo, começa um checkout novo na etapa de endereço."""
        return SessaoCheckout.from_dict(self.request.session.get(self.SESSION_KEY))

    def salvar(self):
        self.request.session[self.SESSION_KEY] = self.sessao.to_dict()
        self.request.session.modified = True

    def limpar(self):
        """Limpa o checkout na sessão (usado após o pagamento criado)."""
        if self.SESSION_KEY in self.request.session:
            del self.request.session[self.SESSION_KEY]
            self.request.session.modified = True
        self.sessao = SessaoCheckout()
