# mirandacoast/core/config.py
"""
Configuração imutável da loja.

Construída uma única vez no início do processo (ver dependency_injection) e
passada explicitamente para gateways e casos de uso.
"""
from dataclasses import dataclass, field
from typing import Dict

from mirandacoast.core.exceptions import ConfiguracaoAusenteError


@dataclass(frozen=True)
class Remetente:
    """Identidade de origem usada nas etiquetas do Melhor Envio."""
    name: str = 'Remetente'
    phone: str = ''
    email: str = ''
    document: str = ''
    company_document: str = ''
    state_register: str = ''
    economic_activity_code: str = ''
    address: str = ''
    number: str = ''
    complement: str = ''
    district: str = ''
    city: str = ''
    state_abbr: str = ''
    postal_code: str = ''
    country: str = 'BR'

    def to_dict(self) -> Dict[str, str]:
        return {
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'document': self.document,
            'company_document': self.company_document,
            'state_register': self.state_register,
            'economic_activity_code': self.economic_activity_code,
            'address': self.address,
            'number': self.number,
            'complement': self.complement or '',
            'district': self.district,
            'city': self.city,
            'state_abbr': self.state_abbr,
            'postal_code': ''.join(c for c in self.postal_code if c.isdigit()),
        }


@dataclass(frozen=True)
class ConfiguracaoLoja:
    mercado_pago_access_token: str = ''
    mercado_pago_api_url: str = 'https://api.mercadopago.com'
    melhor_envio_token: str = ''
    melhor_envio_api_url: str = 'https://www.melhorenvio.com.br/api/v2'
    user_agent: str = 'Miranda Coast (contato@mirandacoast.com.br)'
    nome_loja: str = 'Miranda Coast'
    plataforma: str = 'Miranda Coast'
    statement_descriptor: str = 'MIRANDA COAST'
    cep_origem: str = '88348225'
    endereco_retirada: str = ''
    public_site_url: str = ''
    webhook_pagamento_url: str = ''
    timeout: int = 15
    remetente: Remetente = field(default_factory=Remetente)

    def exigir_token_mercado_pago(self) -> str:
        if not self.mercado_pago_access_token:
            raise ConfiguracaoAusenteError(
                "Gateway de pagamento não configurado: defina MERCADO_PAGO_ACCESS_TOKEN."
            )
        return self.mercado_pago_access_token

    def exigir_token_melhor_envio(self) -> str:
        if not self.melhor_envio_token:
            raise ConfiguracaoAusenteError(
                "Serviço de frete não configurado: defina MELHOR_ENVIO_API_TOKEN."
            )
        return self.melhor_envio_token
