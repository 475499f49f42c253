"""Relatório geral de propostas e exportação para planilha.

Busca as propostas com todas as relações de uma vez, filtra em memória e
achata em uma linha por item. A mesma base alimenta a grade (JSON) e a
planilha xlsx com as abas de apoio.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy.orm import Session, joinedload, selectinload

from . import models
from .helpers import mask_cnpj, mask_phone

logger = logging.getLogger("relatorios")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class RelatorioFiltro:
    search: Optional[str] = None
    date_start: Optional[date] = None
    date_end: Optional[date] = None
    municipio: Optional[str] = None
    fornecedor: Optional[str] = None
    licitacao: Optional[str] = None

    @property
    def terms(self) -> List[str]:
        return (self.search or "").lower().split()


def fetch_propostas(db: Session, newest_first: bool = False) -> List[models.Proposta]:
    """Carrega propostas com licitação, município, fornecedor e itens (sem N+1)."""
    itens = selectinload(models.Proposta.itens)
    query = db.query(models.Proposta).options(
        joinedload(models.Proposta.licitacao).joinedload(models.Licitacao.municipio),
        joinedload(models.Proposta.fornecedor),
        itens.joinedload(models.ItemProposta.unidade),
        itens.joinedload(models.ItemProposta.produto).joinedload(models.Produto.categoria),
        itens.joinedload(models.ItemProposta.produto).joinedload(models.Produto.unidade),
        itens.joinedload(models.ItemProposta.produto).selectinload(models.Produto.unidades),
    )
    if newest_first:
        return query.order_by(models.Proposta.data.desc(), models.Proposta.id.desc()).all()
    return query.order_by(models.Proposta.id.asc()).all()


def _item_fields(proposta: models.Proposta, item: models.ItemProposta) -> List[str]:
    return [
        (item.produto.nome if item.produto else "") or "",
        (proposta.licitacao.nome if proposta.licitacao else "") or "",
        (proposta.fornecedor.nome if proposta.fornecedor else "") or "",
        proposta.observacoes or "",
        item.observacoes or "",
    ]


def matches_search(proposta: models.Proposta, terms: List[str]) -> bool:
    """Uma proposta passa se algum item, sozinho, contém todos os termos.

    Cada termo pode aparecer em qualquer um dos campos do item
    (produto, licitação, fornecedor, observações da proposta ou do item).
    """
    if not terms:
        return True
    for item in proposta.itens:
        fields = [f.lower() for f in _item_fields(proposta, item)]
        if all(any(term in f for f in fields) for term in terms):
            return True
    return False


def filter_propostas(propostas: Iterable[models.Proposta], filtro: RelatorioFiltro) -> List[models.Proposta]:
    terms = filtro.terms
    result: List[models.Proposta] = []
    for p in propostas:
        if not matches_search(p, terms):
            continue
        if filtro.date_start and (p.data is None or p.data < filtro.date_start):
            continue
        if filtro.date_end and (p.data is None or p.data > filtro.date_end):
            continue
        if filtro.municipio and _municipio_nome(p) != filtro.municipio:
            continue
        if filtro.fornecedor and (p.fornecedor is None or p.fornecedor.nome != filtro.fornecedor):
            continue
        if filtro.licitacao and (p.licitacao is None or p.licitacao.nome != filtro.licitacao):
            continue
        result.append(p)
    return result


def _municipio_nome(proposta: models.Proposta) -> str:
    lic = proposta.licitacao
    if lic is None or lic.municipio is None:
        return "-"
    return lic.municipio.nome_completo


def _fmt_date(value) -> str:
    return value.isoformat()[:10] if value else ""


def resolve_unidade(item: models.ItemProposta) -> str:
    """Unidade do item > primeira unidade do produto > unidade legada > texto legado > '-'."""
    if item.unidade is not None:
        return item.unidade.sigla
    produto = item.produto
    if produto is None:
        return "-"
    if produto.unidades:
        return produto.unidades[0].sigla
    if produto.unidade is not None:
        return produto.unidade.sigla
    return produto.unidade_texto or "-"


def _produto_unidades(produto: models.Produto) -> str:
    if produto.unidades:
        return ", ".join(u.sigla for u in produto.unidades)
    if produto.unidade is not None:
        return produto.unidade.sigla
    return produto.unidade_texto or "-"


def flatten(propostas: Iterable[models.Proposta]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for p in propostas:
        fornecedor = p.fornecedor
        for item in p.itens:
            produto = item.produto
            rows.append({
                "id": item.id,
                "propostaId": p.id,
                "data": _fmt_date(p.data) or None,
                "municipio": _municipio_nome(p),
                "licitacao": p.licitacao.nome if p.licitacao else "",
                "numeroProposta": p.numero or "",
                "fornecedor": fornecedor.nome if fornecedor else "",
                "contato": (fornecedor.contato if fornecedor else None) or "",
                "whatsapp": (fornecedor.whatsapp if fornecedor else None) or "",
                "email": (fornecedor.email if fornecedor else None) or "",
                "cnpj": (fornecedor.cnpj if fornecedor else None) or "",
                "arquivoUrl": p.arquivo_url,
                "obsProp": p.observacoes,
                "produto": produto.nome if produto else "",
                "categoria": produto.categoria.nome if produto and produto.categoria else "-",
                "unidade": resolve_unidade(item),
                "quantidade": item.quantidade,
                "precoUnitario": item.preco_unitario,
                "precoTotal": item.preco_total or 0,
                "obsItem": item.observacoes,
            })
    return rows


def relatorio_geral(db: Session, filtro: Optional[RelatorioFiltro] = None) -> List[Dict[str, Any]]:
    propostas = fetch_propostas(db, newest_first=True)
    if filtro is not None:
        propostas = filter_propostas(propostas, filtro)
    return flatten(propostas)


# --- Planilha ---

def _relatorio_sheet(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{
        "Data": r["data"] or "",
        "Município": r["municipio"],
        "Licitação": r["licitacao"],
        "Nº Proposta": r["numeroProposta"],
        "Fornecedor": r["fornecedor"],
        "Contato": r["contato"],
        "WhatsApp": mask_phone(r["whatsapp"]),
        "Email": r["email"],
        "Produto": r["produto"],
        "Categoria": r["categoria"],
        "Unidade": r["unidade"],
        "Quantidade": r["quantidade"],
        "Preço Unitário": r["precoUnitario"],
        "Preço Total": r["precoTotal"],
        "Arquivo": r["arquivoUrl"] or "",
        "Obs Proposta": r["obsProp"] or "",
        "Obs Item": r["obsItem"] or "",
    } for r in rows]


def _itens_sheet(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{
        "Proposta": r["propostaId"],
        "Nº Proposta": r["numeroProposta"],
        "Data": r["data"] or "",
        "Produto": r["produto"],
        "Categoria": r["categoria"],
        "Unidade": r["unidade"],
        "Quantidade": r["quantidade"],
        "Preço Unitário": r["precoUnitario"],
        "Preço Total": r["precoTotal"],
        "Obs Proposta": r["obsProp"] or "",
        "Obs Item": r["obsItem"] or "",
    } for r in rows]


def _licitacoes_sheet(db: Session) -> List[Dict[str, Any]]:
    licitacoes = (
        db.query(models.Licitacao)
        .options(joinedload(models.Licitacao.municipio))
        .order_by(models.Licitacao.id.asc())
        .all()
    )
    return [{
        "ID": lic.id,
        "Nome": lic.nome,
        "Município": lic.municipio.nome_completo if lic.municipio else "-",
        "Data": _fmt_date(lic.data),
        "Criado em": _fmt_date(lic.created_at),
    } for lic in licitacoes]


def _fornecedores_sheet(db: Session) -> List[Dict[str, Any]]:
    fornecedores = db.query(models.Fornecedor).order_by(models.Fornecedor.id.asc()).all()
    return [{
        "ID": f.id,
        "Nome": f.nome,
        "Contato": f.contato or "",
        "WhatsApp": mask_phone(f.whatsapp),
        "Email": f.email or "",
        "CNPJ": mask_cnpj(f.cnpj),
        "Observações": f.observacoes or "",
    } for f in fornecedores]


def _produtos_sheet(db: Session) -> List[Dict[str, Any]]:
    produtos = (
        db.query(models.Produto)
        .options(
            joinedload(models.Produto.categoria),
            joinedload(models.Produto.unidade),
            selectinload(models.Produto.unidades),
        )
        .order_by(models.Produto.id.asc())
        .all()
    )
    return [{
        "ID": p.id,
        "Nome": p.nome,
        "Categoria": p.categoria.nome if p.categoria else "-",
        "Unidades": _produto_unidades(p),
    } for p in produtos]


def _propostas_sheet(propostas: List[models.Proposta]) -> List[Dict[str, Any]]:
    out = []
    for p in propostas:
        f = p.fornecedor
        out.append({
            "ID": p.id,
            "Número": p.numero or "",
            "Data": _fmt_date(p.data),
            "Licitação": p.licitacao.nome if p.licitacao else "",
            "Fornecedor": f.nome if f else "",
            "Contato": (f.contato if f else None) or "",
            "WhatsApp": mask_phone(f.whatsapp if f else None),
            "Email": (f.email if f else None) or "",
            "Total Itens": len(p.itens),
            "Valor Total": round(sum(i.preco_total or 0 for i in p.itens), 2),
            "Obs": p.observacoes or "",
            "Arquivo": p.arquivo_url or "",
        })
    return out


SHEETS = {
    "Relatório Geral": [
        "Data", "Município", "Licitação", "Nº Proposta", "Fornecedor", "Contato", "WhatsApp",
        "Email", "Produto", "Categoria", "Unidade", "Quantidade", "Preço Unitário",
        "Preço Total", "Arquivo", "Obs Proposta", "Obs Item",
    ],
    "Licitações": ["ID", "Nome", "Município", "Data", "Criado em"],
    "Fornecedores": ["ID", "Nome", "Contato", "WhatsApp", "Email", "CNPJ", "Observações"],
    "Produtos": ["ID", "Nome", "Categoria", "Unidades"],
    "Propostas": [
        "ID", "Número", "Data", "Licitação", "Fornecedor", "Contato", "WhatsApp", "Email",
        "Total Itens", "Valor Total", "Obs", "Arquivo",
    ],
    "Detalhamento (Itens)": [
        "Proposta", "Nº Proposta", "Data", "Produto", "Categoria", "Unidade", "Quantidade",
        "Preço Unitário", "Preço Total", "Obs Proposta", "Obs Item",
    ],
}


def build_workbook(db: Session, filtro: Optional[RelatorioFiltro] = None) -> bytes:
    """Gera o xlsx completo. Cadastros de apoio saem inteiros; propostas e itens respeitam o filtro."""
    propostas = fetch_propostas(db)
    if filtro is not None:
        propostas = filter_propostas(propostas, filtro)
    rows = flatten(propostas)

    sheets = {
        "Relatório Geral": _relatorio_sheet(rows),
        "Licitações": _licitacoes_sheet(db),
        "Fornecedores": _fornecedores_sheet(db),
        "Produtos": _produtos_sheet(db),
        "Propostas": _propostas_sheet(propostas),
        "Detalhamento (Itens)": _itens_sheet(rows),
    }

    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for name, columns in SHEETS.items():
            pd.DataFrame(sheets[name], columns=columns).to_excel(writer, index=False, sheet_name=name)
    logger.info(f"[export] planilha gerada propostas={len(propostas)} linhas={len(rows)}")
    return output.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"propostas_export_{today.isoformat()}.xlsx"
