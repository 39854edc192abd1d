"""
Carrier (Bling v3) payloads → rows for the local store.

Order detail, relevant keys:
  id, numero, numeroLoja, data, dataSaida, total,
  contato{id, nome, numeroDocumento}, situacao{id}, loja{id}, notaFiscal{id},
  transporte{etiqueta{nome, endereco, numero, complemento, bairro, municipio, uf, cep},
             volumes[{codigoRastreamento}]},
  itens[{id, codigo, descricao, quantidade, valor}]

Invoice (nfe) detail:
  id, numero, numeroPedidoLoja, serie, tipo, situacao, valorNota, dataEmissao,
  dataOperacao, chaveAcesso, xml, linkDanfe, linkPDF,
  contato{id, nome, numeroDocumento, telefone, endereco}, loja{id}
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional


def _get(d: Dict[str, Any] | None, key: str, default=None):
    if not isinstance(d, dict):
        return default
    return d.get(key, default)


def _str(v: Any) -> Optional[str]:
    if v is None or v == "":
        return None
    return str(v)


def _coerce_float(v: Any) -> Optional[float]:
    try:
        if v is None or v == "":
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


def _coerce_int(v: Any) -> Optional[int]:
    try:
        if v is None or v == "":
            return None
        return int(v)
    except (TypeError, ValueError):
        return None


def order_row(detail: Dict[str, Any]) -> Dict[str, Any]:
    contact = _get(detail, "contato") or {}
    transport = _get(detail, "transporte") or {}
    label = _get(transport, "etiqueta") or {}
    volumes = _get(transport, "volumes") or []
    first_volume = volumes[0] if volumes and isinstance(volumes[0], dict) else {}

    return {
        "order_id": str(detail["id"]),
        "number": _str(detail.get("numero")),
        "order_number": _str(detail.get("numeroLoja")),
        "store_id": _str(_get(_get(detail, "loja"), "id")),
        "date": _str(detail.get("data")),
        "ship_date": _str(detail.get("dataSaida")),
        "total": _coerce_float(detail.get("total")),
        "contact_id": _str(contact.get("id")),
        "contact_name": _str(contact.get("nome")),
        "contact_document": _str(contact.get("numeroDocumento")),
        "status_id": _str(_get(_get(detail, "situacao"), "id")),
        "invoice_id": _str(_get(_get(detail, "notaFiscal"), "id")),
        "label_name": _str(label.get("nome")),
        "label_street": _str(label.get("endereco")),
        "label_number": _str(label.get("numero")),
        "label_complement": _str(label.get("complemento")),
        "label_neighborhood": _str(label.get("bairro")),
        "label_city": _str(label.get("municipio")),
        "label_state": _str(label.get("uf")),
        "label_postal_code": _str(label.get("cep")),
        "tracking_code": _str(first_volume.get("codigoRastreamento")),
        "items_json": json.dumps(detail.get("itens") or [], ensure_ascii=False),
        "raw_json": json.dumps(detail, ensure_ascii=False),
    }


def item_rows(detail: Dict[str, Any]) -> List[Dict[str, Any]]:
    order_id = str(detail["id"])
    order_number = _str(detail.get("numeroLoja"))
    store_id = _str(_get(_get(detail, "loja"), "id"))
    rows: List[Dict[str, Any]] = []
    for item in detail.get("itens") or []:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        rows.append({
            "item_id": str(item["id"]),
            "order_id": order_id,
            "order_number": order_number,
            "store_id": store_id,
            "sku": _str(item.get("codigo")),
            "description": _str(item.get("descricao")),
            "quantity": _coerce_float(item.get("quantidade")),
            "value": _coerce_float(item.get("valor")),
        })
    return rows


def invoice_row(detail: Dict[str, Any]) -> Dict[str, Any]:
    contact = _get(detail, "contato") or {}
    return {
        "invoice_id": str(detail["id"]),
        "number": _str(detail.get("numero")),
        "order_number": _str(detail.get("numeroPedidoLoja")),
        "series": _str(detail.get("serie")),
        "kind": _coerce_int(detail.get("tipo")),
        "status": _coerce_int(detail.get("situacao")),
        "value": _coerce_float(detail.get("valorNota")),
        "issue_date": _str(detail.get("dataEmissao")),
        "operation_date": _str(detail.get("dataOperacao")),
        "access_key": _str(detail.get("chaveAcesso")),
        "xml_url": _str(detail.get("xml")),
        "danfe_link": _str(detail.get("linkDanfe")),
        "pdf_link": _str(detail.get("linkPDF")),
        "contact_id": _str(contact.get("id")),
        "contact_name": _str(contact.get("nome")),
        "contact_document": _str(contact.get("numeroDocumento")),
        "phone": _str(contact.get("telefone")),
        "store_id": _str(_get(_get(detail, "loja"), "id")),
        "address_json": json.dumps(contact.get("endereco") or {}, ensure_ascii=False),
    }
