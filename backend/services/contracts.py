"""
Rental Energia - Contratos de locação
Cálculo dos valores, rascunho HTML e geração do DOCX final (python-docx).

Regras de cálculo:
- média da unidade = soma dos consumos positivos / quantidade de consumos positivos
- CM_total = soma das médias das unidades
- preço final = preço kWh * (1 - desconto)
- valor_locacao_total = CM_total * preço final, truncado
- placas_total = CM_total / 66, truncado (120 kWh por placa / 0,55)
"""

import io
import math
import html
import logging
from datetime import datetime, timezone
from html.parser import HTMLParser
from pathlib import Path
from typing import List, Dict, Any, Optional

from docx import Document
from docx.shared import Pt

import config
from services.formatters import format_document
from services.number_words import number_to_words_ptbr

logger = logging.getLogger("contracts")

CONTRACT_TYPES = ["RENTAL_PF", "RENTAL_PJ", "DORATA_PF", "DORATA_PJ"]
CONTRACT_BRANDS = ["RENTAL", "DORATA"]
KWH_PER_PANEL = 66
APPROVAL_VALIDITY_DAYS = 120


def calculate_contract_values(units: List[dict], price_kwh: float, discount_percent: float) -> Dict[str, Any]:
    """
    `discount_percent` é uma fração (0.2 = 20%).
    `units`: [{"name": str, "consumptions": [float, ...]}]
    """
    units_calculated = []
    for unit in units:
        consumptions = list(unit.get("consumptions") or [])
        valid = [c for c in consumptions if c > 0]
        count = len(valid) or 1
        units_calculated.append({
            "unit_name": unit.get("name", ""),
            "consumptions_kwh": consumptions,
            "consumption_avg_unit": sum(valid) / count,
        })

    consumption_avg_total = sum(u["consumption_avg_unit"] for u in units_calculated)
    price_kwh_final = price_kwh * (1 - discount_percent)

    return {
        "units": units_calculated,
        "consumption_avg_total": consumption_avg_total,
        "price_kwh": price_kwh,
        "discount_percent": discount_percent,
        "price_kwh_final": price_kwh_final,
        "valor_locacao_total": math.floor(consumption_avg_total * price_kwh_final),
        "placas_total": math.floor(consumption_avg_total / KWH_PER_PANEL),
    }


def format_brl(value: float) -> str:
    """1234.5 -> 1.234,50"""
    return f"{value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def format_int_ptbr(value: int) -> str:
    return f"{int(value):,}".replace(",", ".")


# ════════════════════════════════════════════════════════════════════════
# RASCUNHO HTML
# ════════════════════════════════════════════════════════════════════════

DEFAULT_HTML_TEMPLATE = """<h1>CONTRATO DE LOCAÇÃO DE SISTEMA FOTOVOLTAICO</h1>
<p><strong>LOCATÁRIO:</strong> {{cliente_nome}}, inscrito sob o documento {{cliente_doc}}, com endereço em {{cliente_endereco}}.</p>
<p><strong>CONTATO:</strong> {{cliente_contato}}</p>
<h2>UNIDADES CONSUMIDORAS</h2>
{{unidades}}
<h2>VALORES</h2>
<p>Consumo médio total: {{CM_total}} kWh/mês.</p>
<p>Preço do kWh com desconto: R$ {{preco_kwh_final}}.</p>
<p>Valor mensal da locação: R$ {{valor_locacao_total}} ({{valor_locacao_extenso}}).</p>
<p>Quantidade de placas: {{placas_total}}.</p>
<p>{{data_hoje}}</p>
"""


def build_template_data(calculation: dict, client_data: dict) -> Dict[str, str]:
    unidades_html = "".join(
        f"<p>{html.escape(u['unit_name'] or 'Unidade')}: {format_brl(u['consumption_avg_unit'])} kWh/mês</p>"
        for u in calculation["units"]
    )
    return {
        "cliente_nome": html.escape(client_data.get("name") or ""),
        "cliente_doc": html.escape(client_data.get("doc") or ""),
        "cliente_endereco": html.escape(client_data.get("address") or ""),
        "cliente_contato": html.escape(client_data.get("contact") or ""),
        "CM_total": f"{calculation['consumption_avg_total']:.0f}",
        "preco_kwh_final": format_brl(calculation["price_kwh_final"]),
        "valor_locacao_total": format_int_ptbr(calculation["valor_locacao_total"]),
        "valor_locacao_extenso": number_to_words_ptbr(calculation["valor_locacao_total"]),
        "placas_total": str(calculation["placas_total"]),
        "data_hoje": datetime.now(timezone.utc).strftime("%d/%m/%Y"),
        "unidades": unidades_html,
    }


def render_template(template: str, data: Dict[str, str]) -> str:
    for key, value in data.items():
        template = template.replace("{{" + key + "}}", value)
    return template


def build_client_data(name: str, doc: str, contact: Optional[str], address: Optional[str]) -> dict:
    return {
        "name": name.strip(),
        "doc": format_document(doc),
        "contact": contact,
        "address": address,
    }


def render_contract_html(calculation: dict, client_data: dict) -> str:
    return render_template(DEFAULT_HTML_TEMPLATE, build_template_data(calculation, client_data))


# ════════════════════════════════════════════════════════════════════════
# DOCX
# ════════════════════════════════════════════════════════════════════════

class _HtmlBlocks(HTMLParser):
    """Quebra o HTML do editor em blocos (título/parágrafo) de texto puro."""

    BLOCK_TAGS = {"p", "h1", "h2", "h3", "li", "div", "tr"}

    def __init__(self):
        super().__init__()
        self.blocks = []
        self._tag = None
        self._buffer = []

    def _flush(self):
        text = " ".join("".join(self._buffer).split())
        if text:
            self.blocks.append((self._tag or "p", text))
        self._buffer = []

    def handle_starttag(self, tag, attrs):
        if tag in self.BLOCK_TAGS:
            self._flush()
            self._tag = tag
        elif tag == "br":
            self._buffer.append(" ")

    def handle_endtag(self, tag):
        if tag in self.BLOCK_TAGS:
            self._flush()
            self._tag = None

    def handle_data(self, data):
        self._buffer.append(data)

    def close(self):
        super().close()
        self._flush()


def html_to_blocks(content: str):
    parser = _HtmlBlocks()
    parser.feed(content or "")
    parser.close()
    return parser.blocks


def _replace_in_paragraph(paragraph, mapping: Dict[str, str]):
    if not paragraph.runs:
        return
    full_text = "".join(r.text or "" for r in paragraph.runs)
    if "{{" not in full_text:
        return

    replaced = full_text
    for key, value in mapping.items():
        replaced = replaced.replace("{{" + key + "}}", value)
    if replaced == full_text:
        return

    # texto vai para o primeiro run, que mantém a formatação
    paragraph.runs[0].text = replaced
    for run in paragraph.runs[1:]:
        run._element.getparent().remove(run._element)


def _replace_in_tables(tables, mapping: Dict[str, str]):
    for table in tables:
        for row in table.rows:
            for cell in row.cells:
                for p in cell.paragraphs:
                    _replace_in_paragraph(p, mapping)
                _replace_in_tables(cell.tables, mapping)


def fill_docx_template(template_path: Path, mapping: Dict[str, str]) -> bytes:
    """Preenche `{{chave}}` em parágrafos e tabelas de um .docx."""
    document = Document(str(template_path))
    for p in document.paragraphs:
        _replace_in_paragraph(p, mapping)
    _replace_in_tables(document.tables, mapping)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def build_docx_from_html(content: str) -> bytes:
    document = Document()
    style = document.styles["Normal"]
    style.font.name = "Arial"
    style.font.size = Pt(11)

    for tag, text in html_to_blocks(content):
        if tag == "h1":
            document.add_heading(text, level=1)
        elif tag in ("h2", "h3"):
            document.add_heading(text, level=2)
        elif tag == "li":
            document.add_paragraph(text, style="List Bullet")
        else:
            document.add_paragraph(text)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def template_path_for(contract_type: str) -> Path:
    return Path(config.CONTRACT_TEMPLATES_DIR) / f"{contract_type.lower()}.docx"


def generate_contract_docx(contract: dict, html_content: str) -> bytes:
    """
    Usa o template .docx do tipo do contrato quando existir; senão monta o
    documento a partir do HTML aprovado.
    """
    template_path = template_path_for(contract["type"])
    if template_path.exists():
        mapping = {
            k: html.unescape(v)
            for k, v in build_template_data(contract["calculation_data"], contract["client_data"]).items()
            if k != "unidades"
        }
        mapping["unidades"] = "; ".join(
            f"{u['unit_name']}: {format_brl(u['consumption_avg_unit'])} kWh/mês"
            for u in contract["calculation_data"]["units"]
        )
        logger.info(f"[CONTRACT_DOCX] contrato {contract['id']} via template {template_path.name}")
        return fill_docx_template(template_path, mapping)

    logger.info(f"[CONTRACT_DOCX] contrato {contract['id']} gerado a partir do HTML")
    return build_docx_from_html(html_content)
