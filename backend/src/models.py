import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditEntity(str, enum.Enum):
    LICITACAO = "LICITACAO"
    FORNECEDOR = "FORNECEDOR"
    PRODUTO = "PRODUTO"
    PROPOSTA = "PROPOSTA"
    ITEM = "ITEM"
    USER = "USER"
    CATEGORIA = "CATEGORIA"
    UNIDADE = "UNIDADE"


# Unidades permitidas por produto (muitos-para-muitos)
produto_unidades = Table(
    "produto_unidades",
    Base.metadata,
    Column("produto_id", Integer, ForeignKey("produtos.id", ondelete="CASCADE"), primary_key=True),
    Column("unidade_id", Integer, ForeignKey("unidades_medida.id"), primary_key=True),
    # Ordem escolhida no cadastro; a primeira é a unidade principal
    Column("posicao", Integer, nullable=False, default=0),
)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    logs = relationship("AuditLog", back_populates="user")


class Municipio(Base):
    __tablename__ = "municipios"
    id = Column(Integer, primary_key=True, index=True)
    codigo_ibge = Column(String, unique=True, index=True, nullable=False)
    nome = Column(String, nullable=False, index=True)
    uf = Column(String(2), nullable=False)
    nome_completo = Column(String, nullable=False)


class CategoriaProduto(Base):
    __tablename__ = "categorias_produto"
    id = Column(Integer, primary_key=True, index=True)
    nome = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class UnidadeMedida(Base):
    __tablename__ = "unidades_medida"
    id = Column(Integer, primary_key=True, index=True)
    sigla = Column(String, nullable=False)
    nome = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Fornecedor(Base):
    __tablename__ = "fornecedores"
    id = Column(Integer, primary_key=True, index=True)
    nome = Column(String, nullable=False, index=True)
    contato = Column(String, nullable=True)
    whatsapp = Column(String, nullable=True)
    email = Column(String, nullable=True)
    cnpj = Column(String, nullable=True)
    observacoes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    propostas = relationship("Proposta", back_populates="fornecedor")


class Produto(Base):
    __tablename__ = "produtos"
    id = Column(Integer, primary_key=True, index=True)
    nome = Column(String, nullable=False)
    categoria_id = Column(Integer, ForeignKey("categorias_produto.id"), nullable=True)
    # Campos legados: unidade única e texto livre
    unidade_id = Column(Integer, ForeignKey("unidades_medida.id"), nullable=True)
    unidade_texto = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    categoria = relationship("CategoriaProduto")
    unidade = relationship("UnidadeMedida", foreign_keys=[unidade_id])
    unidades = relationship(
        "UnidadeMedida",
        secondary=produto_unidades,
        order_by=lambda: [produto_unidades.c.posicao, UnidadeMedida.id],
    )


class Licitacao(Base):
    __tablename__ = "licitacoes"
    id = Column(Integer, primary_key=True, index=True)
    nome = Column(String, nullable=False)
    municipio_id = Column(Integer, ForeignKey("municipios.id"), nullable=False)
    data = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    municipio = relationship("Municipio")
    propostas = relationship("Proposta", back_populates="licitacao")


class Proposta(Base):
    __tablename__ = "propostas"
    id = Column(Integer, primary_key=True, index=True)
    numero = Column(String, nullable=True)
    licitacao_id = Column(Integer, ForeignKey("licitacoes.id"), nullable=False)
    fornecedor_id = Column(Integer, ForeignKey("fornecedores.id"), nullable=False)
    data = Column(Date, nullable=True)
    arquivo_url = Column(String, nullable=True)
    observacoes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    licitacao = relationship("Licitacao", back_populates="propostas")
    fornecedor = relationship("Fornecedor", back_populates="propostas")
    itens = relationship(
        "ItemProposta",
        back_populates="proposta",
        cascade="all, delete-orphan",
        order_by="ItemProposta.id",
    )


class ItemProposta(Base):
    __tablename__ = "itens_proposta"
    id = Column(Integer, primary_key=True, index=True)
    proposta_id = Column(Integer, ForeignKey("propostas.id", ondelete="CASCADE"), nullable=False)
    produto_id = Column(Integer, ForeignKey("produtos.id"), nullable=False)
    unidade_id = Column(Integer, ForeignKey("unidades_medida.id"), nullable=True)
    quantidade = Column(Float, nullable=False)
    preco_unitario = Column(Float, nullable=False)
    # Persistido no momento da escrita; não é recalculado na leitura
    preco_total = Column(Float, nullable=False)
    observacoes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    proposta = relationship("Proposta", back_populates="itens")
    produto = relationship("Produto")
    unidade = relationship("UnidadeMedida")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(Enum(AuditAction, name="audit_action"), nullable=False)
    entity = Column(Enum(AuditEntity, name="audit_entity"), nullable=False)
    entity_id = Column(Integer, nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="logs")
