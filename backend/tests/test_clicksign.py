"""
Rental Energia - Clicksign Webhook Client Tests
Tests: payload create_contract (PF/PJ), tentativas, resposta sem JSON e
webhook não configurado. Transporte HTTP simulado com httpx.MockTransport.
Run: cd backend && pytest tests/test_clicksign.py -v
"""

import json
import httpx
import pytest

from services import clicksign
from services.clicksign import ClicksignService, build_contract_payload
from tests.helpers import run

WEBHOOK_URL = "https://hooks.example.test/clicksign"


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(clicksign, "RETRY_DELAY_SECONDS", 0)


def service_with(handler):
    return ClicksignService(webhook_url=WEBHOOK_URL, transport=httpx.MockTransport(handler))


INDICACAO_PF = {
    "id": "ind-1",
    "tipo": "PF",
    "nome": "Maria",
    "email": "maria@example.com",
    "telefone": "65999887766",
    "cpf": "12345678901",
    "rg": "123",
    "endereco": "Rua A, 1",
    "cidade": "Cuiabá",
    "estado": "MT",
    "cep": "78000000",
    "user_id": "vend-1",
    "status": "APROVADA",
}


# ═══════════════════════════════════════════════════════════════
# 1. PAYLOAD
# ═══════════════════════════════════════════════════════════════

class TestPayload:

    def test_pf_payload(self):
        payload = build_contract_payload(INDICACAO_PF, {"nome": "Vendedor", "telefone": "65911112222"})

        assert payload["action"] == "create_contract"
        assert payload["tipo_pessoa"] == "PF"
        assert payload["cliente"]["tipo_pessoa"] == "Pessoa Física"
        assert payload["documento"] == {"cpf": "12345678901", "rg": "123"}
        assert payload["endereco"]["endereco_completo"] == "Rua A, 1"
        assert payload["vendedor"] == {"id": "vend-1", "nome": "Vendedor", "telefone": "65911112222"}
        assert payload["status_atual"] == "APROVADA"

    def test_pj_payload(self):
        indicacao = {
            "id": "ind-2", "tipo": "PJ", "nome": "Solar", "cnpj": "12345678000190",
            "razao_social": "Solar LTDA", "responsavel": "João", "endereco": "Av. B",
            "numero": "10", "bairro": "Centro",
        }
        payload = build_contract_payload(indicacao)

        assert payload["cliente"]["tipo_pessoa"] == "Pessoa Jurídica"
        assert payload["documento"]["nome_empresa"] == "Solar LTDA"
        assert payload["documento"]["representante_legal"] == "João"
        assert payload["endereco"]["logradouro"] == "Av. B"
        assert payload["endereco"]["bairro"] == "Centro"
        assert payload["status_atual"] == "EM_ANALISE"


# ═══════════════════════════════════════════════════════════════
# 2. ENVIO
# ═══════════════════════════════════════════════════════════════

class TestSend:

    def test_success_merges_response(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200, json={"document_key": "abc"})

        result = run(service_with(handler).create_contract(INDICACAO_PF))

        assert result == {"success": True, "message": "Contrato criado", "document_key": "abc"}
        assert received[0]["indicacao_id"] == "ind-1"

    def test_non_json_response_is_success(self):
        result = run(service_with(lambda request: httpx.Response(200, text="Accepted")).create_contract(INDICACAO_PF))
        assert result["success"] is True

    def test_retries_until_success(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(500)
            return httpx.Response(200, json={"ok": True})

        result = run(service_with(handler).create_contract(INDICACAO_PF))

        assert result["success"] is True
        assert len(calls) == 3

    def test_gives_up_after_three_attempts(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503)

        result = run(service_with(handler).create_contract(INDICACAO_PF))

        assert result == {"success": False, "message": "HTTP 503"}
        assert len(calls) == 3

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = run(service_with(handler).create_contract(INDICACAO_PF))
        assert result["success"] is False
        assert "connection refused" in result["message"]

    def test_missing_webhook_url(self):
        service = ClicksignService(webhook_url="")
        assert run(service.create_contract(INDICACAO_PF)) == {"success": False, "message": "Webhook não configurado"}
        assert run(service.test_connection()) == {"success": False, "message": "Erro de conexão"}

    def test_connection_ok(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200, json={})

        assert run(service_with(handler).test_connection()) == {"success": True, "message": "Webhook funcionando"}
        assert received[0]["action"] == "test_connection"
