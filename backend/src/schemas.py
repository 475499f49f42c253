from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from datetime import datetime, date
from typing import Optional, List

from .models import AuditAction, AuditEntity


class CamelModel(BaseModel):
    """Base dos esquemas: snake_case no Python, camelCase no JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Esquemas para Usuário ---

class UserCreate(CamelModel):
    # Opcionais para que a validação de presença devolva mensagem própria
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class UserResumo(CamelModel):
    name: str
    email: str


class User(CamelModel):
    id: int
    name: str
    email: str
    is_admin: bool = False
    created_at: Optional[datetime] = None


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: User


# --- Esquemas de apoio ---

class Municipio(CamelModel):
    id: int
    codigo_ibge: str
    nome: str
    uf: str
    nome_completo: str


class CategoriaCreate(CamelModel):
    nome: Optional[str] = None


class Categoria(CamelModel):
    id: int
    nome: str


class UnidadeCreate(CamelModel):
    sigla: Optional[str] = None
    nome: Optional[str] = None


class Unidade(CamelModel):
    id: int
    sigla: str
    nome: Optional[str] = None


# --- Esquemas para Fornecedor ---

class FornecedorBase(CamelModel):
    nome: Optional[str] = None
    contato: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    cnpj: Optional[str] = None
    observacoes: Optional[str] = None


class FornecedorCreate(FornecedorBase):
    pass


class FornecedorUpdate(FornecedorBase):
    pass


class Fornecedor(FornecedorBase):
    id: int
    nome: str
    created_at: Optional[datetime] = None


# --- Esquemas para Produto ---

class ProdutoBase(CamelModel):
    nome: Optional[str] = None
    categoria_id: Optional[int] = None
    unidade_id: Optional[int] = None
    unidade_texto: Optional[str] = None


class ProdutoCreate(ProdutoBase):
    unidade_ids: Optional[List[int]] = None


class ProdutoUpdate(ProdutoCreate):
    pass


class ProdutoResumo(CamelModel):
    id: int
    nome: str
    unidade_texto: Optional[str] = None


class Produto(ProdutoBase):
    id: int
    nome: str
    created_at: Optional[datetime] = None
    categoria: Optional[Categoria] = None
    unidade: Optional[Unidade] = None
    unidades: List[Unidade] = Field(default_factory=list)


# --- Esquemas para Item de Proposta ---

class ItemBase(CamelModel):
    produto_id: Optional[int] = None
    unidade_id: Optional[int] = None
    quantidade: Optional[float] = None
    preco_unitario: Optional[float] = None
    observacoes: Optional[str] = None


class ItemCreate(ItemBase):
    proposta_id: Optional[int] = None


class ItemUpdate(ItemBase):
    pass


class ItemProposta(ItemBase):
    id: int
    proposta_id: int
    produto_id: int
    quantidade: float
    preco_unitario: float
    preco_total: float
    produto: Optional[ProdutoResumo] = None
    unidade: Optional[Unidade] = None


# --- Esquemas para Proposta ---
# O resumo é definido antes de Licitação para que ela possa referenciá-lo

class PropostaBase(CamelModel):
    licitacao_id: Optional[int] = None
    fornecedor_id: Optional[int] = None
    numero: Optional[str] = None
    data: Optional[date] = None
    arquivo_url: Optional[str] = None
    observacoes: Optional[str] = None


class PropostaCreate(PropostaBase):
    pass


class PropostaUpdate(PropostaBase):
    pass


class PropostaResumo(PropostaBase):
    id: int
    licitacao_id: int
    fornecedor_id: int


# --- Esquemas para Licitação ---

class LicitacaoBase(CamelModel):
    nome: Optional[str] = None
    municipio_id: Optional[int] = None
    data: Optional[date] = None


class LicitacaoCreate(LicitacaoBase):
    pass


class LicitacaoUpdate(LicitacaoBase):
    pass


class LicitacaoResumo(LicitacaoBase):
    id: int
    nome: str
    municipio_id: int
    municipio: Optional[Municipio] = None


class Licitacao(LicitacaoResumo):
    created_at: Optional[datetime] = None
    propostas: List[PropostaResumo] = Field(default_factory=list)


class Proposta(PropostaResumo):
    created_at: Optional[datetime] = None
    licitacao: Optional[LicitacaoResumo] = None
    fornecedor: Optional[Fornecedor] = None
    itens: List[ItemProposta] = Field(default_factory=list)

    @computed_field(alias="valorTotal")
    @property
    def valor_total(self) -> float:
        return round(sum(item.preco_total or 0 for item in self.itens), 2)


# --- Auditoria ---

class AuditLog(CamelModel):
    id: int
    user_id: int
    action: AuditAction
    entity: AuditEntity
    entity_id: Optional[int] = None
    details: Optional[str] = None
    created_at: datetime
    user: Optional[UserResumo] = None
