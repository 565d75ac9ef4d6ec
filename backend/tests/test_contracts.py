"""
Rental Energia - Contracts & Storage Tests
Tests: cálculo da locação, rascunho HTML, DOCX (template e HTML) e
armazenamento local de arquivos.
Run: cd backend && pytest tests/test_contracts.py -v
"""

import io
from pathlib import Path

from docx import Document

import config
from services.contracts import (
    build_client_data,
    build_docx_from_html,
    calculate_contract_values,
    format_brl,
    generate_contract_docx,
    html_to_blocks,
    render_contract_html,
)
from services.storage import file_url, get_file, resolve_path, sanitize_filename, save_file
from tests.helpers import run

UNITS = [
    {"name": "Casa", "consumptions": [300, 0, 330]},
    {"name": "Loja", "consumptions": [600]},
]


def docx_text(content: bytes) -> str:
    document = Document(io.BytesIO(content))
    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


# ═══════════════════════════════════════════════════════════════
# 1. CÁLCULO
# ═══════════════════════════════════════════════════════════════

class TestCalculation:

    def test_values(self):
        calc = calculate_contract_values(UNITS, 1.0, 0.2)

        assert calc["units"][0]["consumption_avg_unit"] == 315
        assert calc["units"][1]["consumption_avg_unit"] == 600
        assert calc["consumption_avg_total"] == 915
        assert calc["price_kwh_final"] == 0.8
        assert calc["valor_locacao_total"] == 732
        assert calc["placas_total"] == 13

    def test_zero_consumptions_average_zero(self):
        calc = calculate_contract_values([{"name": "Vazia", "consumptions": [0, 0]}], 1.0, 0)
        assert calc["consumption_avg_total"] == 0
        assert calc["valor_locacao_total"] == 0
        assert calc["placas_total"] == 0

    def test_values_are_truncated(self):
        calc = calculate_contract_values([{"name": "A", "consumptions": [131]}], 0.99, 0)
        assert calc["valor_locacao_total"] == 129
        assert calc["placas_total"] == 1

    def test_format_brl(self):
        assert format_brl(1234.5) == "1.234,50"
        assert format_brl(0.8) == "0,80"


# ═══════════════════════════════════════════════════════════════
# 2. RASCUNHO E DOCX
# ═══════════════════════════════════════════════════════════════

class TestDocuments:

    def test_client_data_formats_document(self):
        data = build_client_data(" Maria ", "12345678901", "65999887766", "Rua A")
        assert data == {"name": "Maria", "doc": "123.456.789-01", "contact": "65999887766", "address": "Rua A"}

    def test_html_draft(self):
        calc = calculate_contract_values(UNITS, 1.0, 0.2)
        client = build_client_data("Maria <Souza>", "12345678901", None, "Rua A")

        content = render_contract_html(calc, client)

        assert "Maria &lt;Souza&gt;" in content
        assert "123.456.789-01" in content
        assert "R$ 732 (setecentos e trinta e dois reais)" in content
        assert "Quantidade de placas: 13." in content
        assert "{{" not in content

    def test_html_blocks(self):
        blocks = html_to_blocks("<h1>Título</h1><p>Linha <strong>um</strong><br>dois</p><ul><li>Item</li></ul>")
        assert blocks == [("h1", "Título"), ("p", "Linha um dois"), ("li", "Item")]

    def test_docx_from_html(self):
        content = build_docx_from_html("<h1>CONTRATO</h1><p>Cláusula primeira.</p><li>Item</li>")
        text = docx_text(content)
        assert "CONTRATO" in text
        assert "Cláusula primeira." in text
        assert "Item" in text

    def test_docx_uses_type_template(self):
        templates = Path(config.CONTRACT_TEMPLATES_DIR)
        templates.mkdir(parents=True)
        template = Document()
        paragraph = template.add_paragraph()
        paragraph.add_run("Locatário: {{cliente_")
        paragraph.add_run("nome}} fim")
        table = template.add_table(rows=1, cols=1)
        table.cell(0, 0).text = "Valor {{valor_locacao_total}}"
        template.save(str(templates / "rental_pf.docx"))

        calc = calculate_contract_values(UNITS, 1.0, 0.2)
        contract = {
            "id": "c1",
            "type": "RENTAL_PF",
            "calculation_data": calc,
            "client_data": build_client_data("Souza & Filhos", "12345678901", None, None),
        }

        text = docx_text(generate_contract_docx(contract, "<p>ignorado</p>"))

        assert "Locatário: Souza & Filhos fim" in text
        assert "Valor 732" in text
        assert "ignorado" not in text

    def test_docx_falls_back_to_html(self):
        contract = {"id": "c2", "type": "DORATA_PJ", "calculation_data": {}, "client_data": {}}
        text = docx_text(generate_contract_docx(contract, "<p>Texto aprovado</p>"))
        assert "Texto aprovado" in text


# ═══════════════════════════════════════════════════════════════
# 3. ARMAZENAMENTO
# ═══════════════════════════════════════════════════════════════

class TestStorage:

    def test_sanitize_filename(self):
        assert sanitize_filename("../a b.docx") == "a_b.docx"
        assert sanitize_filename("") == "arquivo"

    def test_save_and_resolve(self):
        doc = run(save_file(b"conteudo", "contrato final.docx", "application/octet-stream",
                            folder="contratos", owner_id="u1"))

        assert doc["size"] == 8
        assert doc["original_name"] == "contrato final.docx"
        assert file_url(doc["id"]) == f"/api/files/{doc['id']}"

        stored = run(get_file(doc["id"]))
        assert stored["owner_id"] == "u1"
        path = resolve_path(stored)
        assert path.read_bytes() == b"conteudo"
        assert path.parent.name == "contratos"
