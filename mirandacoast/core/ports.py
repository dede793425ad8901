# mirandacoast/core/ports.py
"""
Definição das Portas (Interfaces/Protocolos) da Arquitetura Limpa.

Estes protocolos definem o contrato que a camada de Infraestrutura (Repositórios, Gateways)
DEVE seguir para se conectar à camada Core (Casos de Uso).
"""

from typing import Protocol, List, Optional, Dict, Any, Callable
from abc import abstractmethod
from decimal import Decimal

from mirandacoast.core.entities import (
    Pedido, ItemPedido, ItemPagamento, OpcaoFrete, ResultadoPagamento,
    SolicitacaoPreferencia, SolicitacaoCobrancaDireta, TransacaoPagamento,
)


# ====================================================================
# 1. REPOSITÓRIOS (Portas de Persistência)
# ====================================================================

class IPedidoRepository(Protocol):
    """Protocolo para a persistência de Pedidos e seus Itens."""

    @abstractmethod
    def criar(self, pedido: Pedido) -> Pedido:
        """Insere a linha do pedido (sem itens)."""
        ...

    @abstractmethod
    def adicionar_itens(self, pedido_id: str, itens: List[ItemPedido]) -> List[ItemPedido]:
        """Insere os itens em lote. Etapa separada da criação do pedido."""
        ...

    @abstractmethod
    def contar_itens(self, pedido_id: str) -> int: ...

    @abstractmethod
    def buscar_por_id(self, pedido_id: str) -> Optional[Pedido]: ...

    @abstractmethod
    def atualizar(self, pedido_id: str, **campos) -> Pedido:
        """Atualiza somente os campos mutáveis (status, pagamento, rastreio, etiqueta)."""
        ...

    @abstractmethod
    def atualizar_se(self, pedido_id: str, calcular: Callable[[Pedido], Dict[str, Any]]) -> Optional[Pedido]:
        """
        Lê o pedido com a linha travada, aplica `calcular(pedido_atual)` e grava
        os campos devolvidos na mesma transação. Sem campos, nada é gravado.
        Devolve None quando o pedido não existe.
        """
        ...


# ====================================================================
# 2. GATEWAYS (Portas de Serviços Externos)
# ====================================================================

class IGatewayPagamento(Protocol):
    """Protocolo para o processador de pagamentos (Mercado Pago)."""

    @abstractmethod
    def criar_preferencia(
        self,
        solicitacao: SolicitacaoPreferencia,
        itens: List[ItemPagamento],
        back_urls: Dict[str, str],
        notification_url: str,
    ) -> ResultadoPagamento: ...

    @abstractmethod
    def criar_cobranca(
        self,
        solicitacao: SolicitacaoCobrancaDireta,
        itens: List[ItemPagamento],
        valor: Decimal,
        notification_url: str,
    ) -> ResultadoPagamento: ...

    @abstractmethod
    def consultar_pagamento(self, pagamento_id: str) -> TransacaoPagamento: ...


class IGatewayFrete(Protocol):
    """Protocolo para o agregador de transportadoras (Melhor Envio)."""

    @abstractmethod
    def calcular(self, cep_origem: str, cep_destino: str, pacote: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Retorna as opções brutas do provedor para um pacote sintético."""
        ...

    @abstractmethod
    def adicionar_ao_carrinho(self, envio: Dict[str, Any]) -> str: ...

    @abstractmethod
    def comprar(self, melhor_envio_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def gerar(self, melhor_envio_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def imprimir(self, melhor_envio_id: str) -> Optional[str]: ...

    @abstractmethod
    def rastrear(self, melhor_envio_id: str) -> Optional[str]: ...

    @abstractmethod
    def consultar_envio(self, melhor_envio_id: str) -> Dict[str, Any]: ...
