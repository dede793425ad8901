import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Dict, Any

import requests
from requests.exceptions import RequestException

from mirandacoast.core.config import ConfiguracaoLoja
from mirandacoast.core.entities import (
    ItemPagamento, ResultadoPagamento, TransacaoPagamento,
    SolicitacaoPreferencia, SolicitacaoCobrancaDireta,
)
from mirandacoast.core.exceptions import (
    FreteIndisponivelError,
    ProvedorIndisponivelError,
    ProvedorRecusouError,
)
from mirandacoast.core.ports import IGatewayPagamento, IGatewayFrete
from mirandacoast.core.use_cases import classificar_metodo, METODO_BOLETO, METODO_CARTAO

logger = logging.getLogger(__name__)


# ====================================================================
# GATEWAYS: Implementações concretas que se comunicam com APIs externas.
# ====================================================================

def _corpo(response) -> Any:
    """JSON da resposta ou, se não for JSON, o texto bruto."""
    try:
        return response.json()
    except ValueError:
        return response.text


class MercadoPagoGateway(IGatewayPagamento):
    """
    Gateway para comunicação com a API de Pagamento do Mercado Pago.
    Toda criação de pagamento usa uma chave de idempotência nova.
    """

    def __init__(self, configuracao: ConfiguracaoLoja):
        self.configuracao = configuracao
        self.api_base_url = configuracao.mercado_pago_api_url.rstrip('/')

    def _headers(self, idempotente: bool = False) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.configuracao.exigir_token_mercado_pago()}",
            "Content-Type": "application/json",
        }
        if idempotente:
            headers["X-Idempotency-Key"] = str(uuid.uuid4())  # Para evitar duplicidade
        return headers

    def _enviar(self, metodo: str, caminho: str, payload: Optional[dict] = None, idempotente: bool = False) -> Any:
        headers = self._headers(idempotente)
        url = f"{self.api_base_url}{caminho}"
        try:
            if metodo == 'GET':
                response = requests.get(url, headers=headers, timeout=self.configuracao.timeout)
            else:
                response = requests.post(url, json=payload, headers=headers, timeout=self.configuracao.timeout)
        except RequestException as e:
            logger.error("Erro de conexão com o Mercado Pago (%s): %s", caminho, e)
            raise ProvedorIndisponivelError(f"Erro de conexão com a API do Mercado Pago: {e}")

        dados = _corpo(response)
        if response.status_code >= 500:
            logger.error("Mercado Pago indisponível (%s) %s: %s", caminho, response.status_code, dados)
            raise ProvedorIndisponivelError(f"Mercado Pago respondeu {response.status_code}.")
        if not response.ok:
            logger.error("Mercado Pago recusou (%s) %s: %s", caminho, response.status_code, dados)
            mensagem = dados.get('message') if isinstance(dados, dict) else None
            raise ProvedorRecusouError(
                mensagem or "Falha ao criar pagamento no Mercado Pago.",
                status_code=response.status_code,
                detalhes=dados,
            )
        return dados

    @staticmethod
    def _item(item: ItemPagamento, com_moeda: bool = False) -> Dict[str, Any]:
        dados = {
            "id": item.id,
            "title": item.title,
            "description": item.description or item.title or "Produto",
            "picture_url": item.picture_url,
            "quantity": int(item.quantity),
            "unit_price": float(item.unit_price),
        }
        if com_moeda:
            dados["currency_id"] = "BRL"
        return dados

    # --- PREFERÊNCIA (checkout hospedado) ---

    def criar_preferencia(
        self,
        solicitacao: SolicitacaoPreferencia,
        itens: List[ItemPagamento],
        back_urls: Dict[str, str],
        notification_url: str,
    ) -> ResultadoPagamento:
        payload = {
            "items": [self._item(item, com_moeda=True) for item in itens],
            "payer": {
                "email": solicitacao.pagador.email or "",
                "name": solicitacao.pagador.nome_completo or "Cliente",
            },
            "back_urls": back_urls,
            "auto_return": "approved",
            "external_reference": solicitacao.external_reference,
            "statement_descriptor": self.configuracao.statement_descriptor,
            "notification_url": notification_url,
        }
        dados = self._enviar('POST', '/checkout/preferences', payload, idempotente=True)
        return ResultadoPagamento(
            id=dados.get("id"),
            init_point=dados.get("init_point"),
            sandbox_init_point=dados.get("sandbox_init_point"),
        )

    # --- COBRANÇA DIRETA (Pix, boleto, cartão) ---

    def criar_cobranca(
        self,
        solicitacao: SolicitacaoCobrancaDireta,
        itens: List[ItemPagamento],
        valor: Decimal,
        notification_url: str,
    ) -> ResultadoPagamento:
        pagador = solicitacao.pagador
        metodo = classificar_metodo(solicitacao.payment_method_id)

        nome = pagador.nome_completo.split()
        payer = {
            "email": pagador.email or "",
            "first_name": pagador.first_name or (nome[0] if nome else "Cliente"),
            "last_name": pagador.last_name or (" ".join(nome[1:]) if len(nome) > 1 else ""),
            "identification": {
                "type": pagador.document_type or "CPF",
                "number": pagador.document or "",
            },
        }
        if metodo == METODO_BOLETO:
            endereco = pagador.address
            payer["address"] = {
                "zip_code": ''.join(c for c in str(endereco.get("zip_code", "")) if c.isdigit()),
                "street_name": endereco.get("street_name"),
                "street_number": str(endereco.get("street_number")),
                "neighborhood": endereco.get("neighborhood") or "",
                "city": endereco.get("city"),
                "federal_unit": endereco.get("federal_unit"),
            }

        payload = {
            "transaction_amount": float(valor),
            "description": itens[0].title if itens else "Pedido",
            # O Mercado Pago só conhece o boleto pelo id do banco emissor
            "payment_method_id": "bolbradesco" if metodo == METODO_BOLETO else solicitacao.payment_method_id,
            "payer": payer,
            "external_reference": solicitacao.external_reference,
            "statement_descriptor": self.configuracao.statement_descriptor,
            "notification_url": notification_url,
            "additional_info": {"items": [self._item(item) for item in itens]},
        }
        if metodo == METODO_CARTAO:
            payload["token"] = solicitacao.token
            payload["installments"] = int(solicitacao.installments or 1)

        dados = self._enviar('POST', '/v1/payments', payload, idempotente=True)

        transacao = (dados.get("point_of_interaction") or {}).get("transaction_data") or {}
        detalhes = dados.get("transaction_details") or {}
        return ResultadoPagamento(
            id=str(dados["id"]) if dados.get("id") is not None else None,
            status=dados.get("status"),
            status_detail=dados.get("status_detail"),
            qr_code=transacao.get("qr_code"),
            qr_code_base64=transacao.get("qr_code_base64"),
            ticket_url=transacao.get("ticket_url") or detalhes.get("external_resource_url"),
        )

    # --- CONSULTA (webhook) ---

    def consultar_pagamento(self, pagamento_id: str) -> TransacaoPagamento:
        dados = self._enviar('GET', f'/v1/payments/{pagamento_id}')
        return TransacaoPagamento(
            referencia_externa=dados.get("external_reference"),
            pagamento_id=str(dados.get("id") or pagamento_id),
            status=dados.get("status"),
            status_detail=dados.get("status_detail"),
        )


class MelhorEnvioGateway(IGatewayFrete):
    """
    Gateway para a API do Melhor Envio (cotação e etiquetas).
    Nenhuma chamada é repetida automaticamente.
    """

    def __init__(self, configuracao: ConfiguracaoLoja):
        self.configuracao = configuracao
        self.api_base_url = configuracao.melhor_envio_api_url.rstrip('/')

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.configuracao.exigir_token_melhor_envio()}",
            "User-Agent": self.configuracao.user_agent,
        }

    def _enviar(self, metodo: str, caminho: str, payload: Optional[dict] = None) -> Any:
        headers = self._headers()
        url = f"{self.api_base_url}{caminho}"
        try:
            if metodo == 'GET':
                response = requests.get(url, headers=headers, timeout=self.configuracao.timeout)
            else:
                response = requests.post(url, json=payload, headers=headers, timeout=self.configuracao.timeout)
        except RequestException as e:
            logger.error("Erro de conexão com o Melhor Envio (%s): %s", caminho, e)
            raise ProvedorIndisponivelError(f"Erro de conexão com a API do Melhor Envio: {e}")

        dados = _corpo(response)
        if response.status_code >= 500:
            logger.error("Melhor Envio indisponível (%s) %s: %s", caminho, response.status_code, dados)
            raise ProvedorIndisponivelError(f"Melhor Envio respondeu {response.status_code}.")
        if not response.ok:
            logger.error("Melhor Envio recusou (%s) %s: %s", caminho, response.status_code, dados)
            mensagem = dados.get('message') if isinstance(dados, dict) else None
            raise ProvedorRecusouError(
                mensagem or f"Melhor Envio recusou a operação em {caminho}.",
                status_code=response.status_code,
                detalhes=dados,
            )
        logger.info("Melhor Envio %s OK", caminho)
        return dados

    # --- COTAÇÃO ---

    def calcular(self, cep_origem: str, cep_destino: str, pacote: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = {
            "from": {"postal_code": cep_origem},
            "to": {"postal_code": cep_destino},
            "products": [pacote],
        }
        try:
            dados = self._enviar('POST', '/me/shipment/calculate', payload)
        except (ProvedorRecusouError, ProvedorIndisponivelError) as e:
            raise FreteIndisponivelError(f"Não foi possível calcular o frete: {e}") from e
        if not isinstance(dados, list):
            logger.error("Resposta inesperada da cotação: %s", dados)
            raise FreteIndisponivelError("Resposta inesperada do Melhor Envio na cotação.")
        return dados

    # --- ETIQUETA (saga) ---

    def adicionar_ao_carrinho(self, envio: Dict[str, Any]) -> str:
        dados = self._enviar('POST', '/me/cart', envio)
        if not isinstance(dados, dict) or not dados.get("id"):
            raise ProvedorRecusouError("Melhor Envio não retornou o id do item no carrinho.", detalhes=dados)
        return str(dados["id"])

    def comprar(self, melhor_envio_id: str) -> Dict[str, Any]:
        return self._enviar('POST', '/me/shipment/checkout', {"orders": [melhor_envio_id]})

    def gerar(self, melhor_envio_id: str) -> Dict[str, Any]:
        return self._enviar('POST', '/me/shipment/generate', {"orders": [melhor_envio_id]})

    def imprimir(self, melhor_envio_id: str) -> Optional[str]:
        dados = self._enviar('POST', '/me/shipment/print', {"mode": "public", "orders": [melhor_envio_id]})
        return dados.get("url") if isinstance(dados, dict) else None

    def rastrear(self, melhor_envio_id: str) -> Optional[str]:
        dados = self._enviar('POST', '/me/shipment/tracking', {"orders": [melhor_envio_id]})
        if not isinstance(dados, dict):
            return None
        return (dados.get(melhor_envio_id) or {}).get("tracking")

    def consultar_envio(self, melhor_envio_id: str) -> Dict[str, Any]:
        dados = self._enviar('GET', f'/me/orders/{melhor_envio_id}')
        return dados if isinstance(dados, dict) else {}
