"""
Integração Clicksign (via webhook de automação)

O contrato não é criado diretamente na API do Clicksign: os dados da
indicação são enviados para um webhook (Zapier) que monta o documento.

- POST JSON, timeout 30s
- 3 tentativas, espera de tentativa * 2s entre elas
- resposta que não é JSON conta como sucesso
"""

import asyncio
import logging
from typing import Optional

import httpx

import config
from config import now_iso

logger = logging.getLogger("clicksign")

TIMEOUT_SECONDS = 30.0
MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 2


class ClicksignError(Exception):
    """Falha ao falar com o webhook do Clicksign"""
    pass


def build_contract_payload(indicacao: dict, vendedor: Optional[dict] = None) -> dict:
    """Monta o corpo `create_contract` a partir de uma indicação."""
    tipo = indicacao.get("tipo", "PF")
    vendedor = vendedor or {}

    if tipo == "PF":
        documento = {"cpf": indicacao.get("cpf"), "rg": indicacao.get("rg")}
    else:
        documento = {
            "cnpj": indicacao.get("cnpj"),
            "nome_empresa": indicacao.get("razao_social") or indicacao.get("nome_fantasia"),
            "representante_legal": indicacao.get("responsavel"),
            "cpf_representante": indicacao.get("cpf_representante"),
            "rg_representante": indicacao.get("rg_representante"),
        }

    endereco = {
        "cidade": indicacao.get("cidade"),
        "estado": indicacao.get("estado"),
        "cep": indicacao.get("cep"),
    }
    if tipo == "PJ":
        endereco.update({
            "logradouro": indicacao.get("logradouro") or indicacao.get("endereco"),
            "numero": indicacao.get("numero"),
            "bairro": indicacao.get("bairro"),
        })
    else:
        endereco["endereco_completo"] = indicacao.get("endereco")

    return {
        "action": "create_contract",
        "tipo_pessoa": tipo,
        "indicacao_id": indicacao.get("id"),
        "timestamp": now_iso(),
        "cliente": {
            "nome": indicacao.get("nome"),
            "email": indicacao.get("email"),
            "telefone": indicacao.get("telefone"),
            "tipo_pessoa": "Pessoa Física" if tipo == "PF" else "Pessoa Jurídica",
        },
        "documento": documento,
        "endereco": endereco,
        "energia": {
            "codigo_cliente": indicacao.get("codigo_cliente_energia"),
            "consumo_kwh": indicacao.get("consumo_medio_kwh"),
            "valor_conta": indicacao.get("valor_conta_energia"),
        },
        "vendedor": {
            "id": indicacao.get("user_id"),
            "nome": vendedor.get("nome"),
            "telefone": vendedor.get("telefone"),
        },
        "documentos_anexados": {},
        "observacoes": indicacao.get("observacoes") or "",
        "data_criacao": indicacao.get("created_at") or now_iso(),
        "status_atual": indicacao.get("status") or "EM_ANALISE",
    }


class ClicksignService:

    def __init__(self, webhook_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url if webhook_url is not None else config.CLICKSIGN_WEBHOOK_URL
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=TIMEOUT_SECONDS, transport=self.transport)

    async def _send_with_retry(self, payload: dict) -> dict:
        if not self.webhook_url:
            raise ClicksignError("Webhook não configurado")

        last_error = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                async with self._client() as client:
                    resp = await client.post(self.webhook_url, json=payload)

                if resp.status_code < 200 or resp.status_code >= 300:
                    raise ClicksignError(f"HTTP {resp.status_code}")

                try:
                    data = resp.json()
                except ValueError:
                    return {"success": True}
                return data if isinstance(data, dict) else {"success": True, "data": data}

            except (httpx.HTTPError, ClicksignError) as e:
                last_error = e
                logger.warning(
                    f"[CLICKSIGN] tentativa {attempt}/{MAX_RETRIES} falhou: {e}"
                )
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(attempt * RETRY_DELAY_SECONDS)

        raise ClicksignError(str(last_error) if last_error else "Erro desconhecido")

    async def create_contract(self, indicacao: dict, vendedor: Optional[dict] = None) -> dict:
        payload = build_contract_payload(indicacao, vendedor)
        try:
            response = await self._send_with_retry(payload)
        except ClicksignError as e:
            logger.error(f"[CLICKSIGN] contrato da indicação {indicacao.get('id')} não enviado: {e}")
            return {"success": False, "message": str(e)}

        logger.info(f"[CLICKSIGN] contrato da indicação {indicacao.get('id')} enviado")
        return {"success": True, "message": "Contrato criado", **response}

    async def test_connection(self) -> dict:
        try:
            await self._send_with_retry({"action": "test_connection", "timestamp": now_iso()})
        except ClicksignError as e:
            logger.error(f"[CLICKSIGN] teste de conexão falhou: {e}")
            return {"success": False, "message": "Erro de conexão"}
        return {"success": True, "message": "Webhook funcionando"}
