import os
from typing import List, Optional

from passlib.context import CryptContext
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session, joinedload, selectinload

from . import models, schemas
from .errors import DuplicateError, InUseError, NotFoundError, ValidationError
from .helpers import compute_preco_total

# bcrypt com custo 10
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@sistema.com")


def _require(value, message: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


def _get_or_404(db: Session, model, obj_id: int, message: str):
    obj = db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(message)
    return obj


# --- Users ---
def get_user_by_email(db: Session, email: str) -> models.User | None:
    return db.query(models.User).filter(models.User.email == email).first()


def get_user(db: Session, user_id: int) -> models.User | None:
    return db.get(models.User, user_id)


def get_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.created_at.desc(), models.User.id.desc()).all()


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def create_user(db: Session, user: schemas.UserCreate, is_admin: Optional[bool] = None) -> models.User:
    if not user.name or not user.email or not user.password:
        raise ValidationError("Todos os campos são obrigatórios")
    email = user.email.strip()
    if get_user_by_email(db, email):
        raise DuplicateError("Este e-mail já está cadastrado")
    db_user = models.User(
        name=user.name.strip(),
        email=email,
        hashed_password=get_password_hash(user.password),
        is_admin=(email == ADMIN_EMAIL) if is_admin is None else is_admin,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def delete_user(db: Session, user_id: int, current_user: models.User) -> models.User:
    """Remove um usuário e seus registros de auditoria. Administradores não podem ser removidos."""
    user = _get_or_404(db, models.User, user_id, "Usuário não encontrado")
    if user.is_admin or user.id == current_user.id:
        raise ValidationError("Não é possível deletar o usuário administrador")
    db.query(models.AuditLog).filter(models.AuditLog.user_id == user_id).delete(synchronize_session=False)
    db.delete(user)
    db.commit()
    return user


# --- Municípios ---
def search_municipios(db: Session, search: Optional[str], limit: int = 20) -> List[models.Municipio]:
    if not search or len(search) < 3:
        return []
    pattern = f"%{search}%"
    return (
        db.query(models.Municipio)
        .filter(or_(models.Municipio.nome.ilike(pattern), models.Municipio.nome_completo.ilike(pattern)))
        .order_by(models.Municipio.nome.asc())
        .limit(limit)
        .all()
    )


# --- Categorias ---
def get_categorias(db: Session) -> List[models.CategoriaProduto]:
    return db.query(models.CategoriaProduto).order_by(models.CategoriaProduto.nome.asc()).all()


def create_categoria(db: Session, categoria: schemas.CategoriaCreate) -> models.CategoriaProduto:
    nome = _require(categoria.nome, "Nome é obrigatório")
    db_categoria = models.CategoriaProduto(nome=nome.strip())
    db.add(db_categoria)
    db.commit()
    db.refresh(db_categoria)
    return db_categoria


def delete_categoria(db: Session, categoria_id: int) -> models.CategoriaProduto:
    categoria = _get_or_404(db, models.CategoriaProduto, categoria_id, "Categoria não encontrada")
    in_use = db.query(models.Produto.id).filter(models.Produto.categoria_id == categoria_id).first()
    if in_use:
        raise InUseError("Categoria em uso por produtos")
    db.delete(categoria)
    db.commit()
    return categoria


# --- Unidades de medida ---
def get_unidades(db: Session) -> List[models.UnidadeMedida]:
    return db.query(models.UnidadeMedida).order_by(models.UnidadeMedida.sigla.asc()).all()


def create_unidade(db: Session, unidade: schemas.UnidadeCreate) -> models.UnidadeMedida:
    sigla = _require(unidade.sigla, "Sigla é obrigatória")
    db_unidade = models.UnidadeMedida(sigla=sigla.strip(), nome=unidade.nome)
    db.add(db_unidade)
    db.commit()
    db.refresh(db_unidade)
    return db_unidade


def delete_unidade(db: Session, unidade_id: int) -> models.UnidadeMedida:
    unidade = _get_or_404(db, models.UnidadeMedida, unidade_id, "Unidade não encontrada")
    in_use_item = db.query(models.ItemProposta.id).filter(models.ItemProposta.unidade_id == unidade_id).first()
    in_use_produto = (
        db.query(models.Produto.id)
        .filter(
            or_(
                models.Produto.unidade_id == unidade_id,
                models.Produto.unidades.any(models.UnidadeMedida.id == unidade_id),
            )
        )
        .first()
    )
    if in_use_item or in_use_produto:
        raise InUseError("Unidade em uso")
    db.delete(unidade)
    db.commit()
    return unidade


# --- Fornecedores ---
def get_fornecedores(db: Session) -> List[models.Fornecedor]:
    return db.query(models.Fornecedor).order_by(models.Fornecedor.created_at.desc(), models.Fornecedor.id.desc()).all()


def _check_fornecedor_nome(db: Session, nome: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(models.Fornecedor.id).filter(func.lower(models.Fornecedor.nome) == nome.strip().lower())
    if exclude_id is not None:
        query = query.filter(models.Fornecedor.id != exclude_id)
    if query.first():
        raise DuplicateError("Já existe um fornecedor com este nome")


def create_fornecedor(db: Session, fornecedor: schemas.FornecedorCreate) -> models.Fornecedor:
    nome = _require(fornecedor.nome, "Nome obrigatório")
    _check_fornecedor_nome(db, nome)
    data = fornecedor.model_dump()
    data["nome"] = nome.strip()
    db_fornecedor = models.Fornecedor(**data)
    db.add(db_fornecedor)
    db.commit()
    db.refresh(db_fornecedor)
    return db_fornecedor


def update_fornecedor(db: Session, fornecedor_id: int, fornecedor: schemas.FornecedorUpdate) -> models.Fornecedor:
    db_fornecedor = _get_or_404(db, models.Fornecedor, fornecedor_id, "Fornecedor não encontrado")
    data = fornecedor.model_dump(exclude_unset=True)
    if "nome" in data:
        data["nome"] = _require(data["nome"], "Nome obrigatório").strip()
        _check_fornecedor_nome(db, data["nome"], exclude_id=fornecedor_id)
    for field, value in data.items():
        setattr(db_fornecedor, field, value)
    db.commit()
    db.refresh(db_fornecedor)
    return db_fornecedor


def delete_fornecedor(db: Session, fornecedor_id: int) -> models.Fornecedor:
    fornecedor = _get_or_404(db, models.Fornecedor, fornecedor_id, "Fornecedor não encontrado")
    if db.query(models.Proposta.id).filter(models.Proposta.fornecedor_id == fornecedor_id).first():
        raise InUseError("Fornecedor possui propostas vinculadas")
    db.delete(fornecedor)
    db.commit()
    return fornecedor


# --- Produtos ---
def _produto_query(db: Session):
    return db.query(models.Produto).options(
        joinedload(models.Produto.categoria),
        joinedload(models.Produto.unidade),
        selectinload(models.Produto.unidades),
    )


def get_produtos(db: Session) -> List[models.Produto]:
    return _produto_query(db).order_by(models.Produto.created_at.desc(), models.Produto.id.desc()).all()


def get_produto(db: Session, produto_id: int) -> models.Produto:
    produto = _produto_query(db).filter(models.Produto.id == produto_id).first()
    if produto is None:
        raise NotFoundError("Produto não encontrado")
    return produto


def _check_refs_produto(db: Session, data: dict) -> None:
    if data.get("categoria_id") is not None and db.get(models.CategoriaProduto, data["categoria_id"]) is None:
        raise ValidationError("Categoria não encontrada")
    if data.get("unidade_id") is not None and db.get(models.UnidadeMedida, data["unidade_id"]) is None:
        raise ValidationError("Unidade não encontrada")


def _set_unidades(db: Session, produto: models.Produto, unidade_ids: List[int]) -> None:
    """Substitui o conjunto de unidades na ordem enviada e sincroniza o texto legado com a primeira."""
    ids = list(dict.fromkeys(unidade_ids))
    unidades = []
    if ids:
        found = {u.id: u for u in db.query(models.UnidadeMedida).filter(models.UnidadeMedida.id.in_(ids)).all()}
        if len(found) != len(ids):
            raise ValidationError("Unidade não encontrada")
        unidades = [found[i] for i in ids]
    produto.unidades = unidades
    if unidades:
        produto.unidade_texto = unidades[0].sigla
    # A relação não grava a posição; ajusta depois que os vínculos existem
    db.flush()
    for posicao, unidade in enumerate(unidades):
        db.execute(
            update(models.produto_unidades)
            .where(
                models.produto_unidades.c.produto_id == produto.id,
                models.produto_unidades.c.unidade_id == unidade.id,
            )
            .values(posicao=posicao)
        )


def create_produto(db: Session, produto: schemas.ProdutoCreate) -> models.Produto:
    nome = _require(produto.nome, "Nome é obrigatório")
    data = produto.model_dump(exclude={"unidade_ids"})
    data["nome"] = nome.strip()
    _check_refs_produto(db, data)
    db_produto = models.Produto(**data)
    db.add(db_produto)
    if produto.unidade_ids:
        _set_unidades(db, db_produto, produto.unidade_ids)
    db.commit()
    return get_produto(db, db_produto.id)


def update_produto(db: Session, produto_id: int, produto: schemas.ProdutoUpdate) -> models.Produto:
    db_produto = get_produto(db, produto_id)
    data = produto.model_dump(exclude_unset=True, exclude={"unidade_ids"})
    if "nome" in data:
        data["nome"] = _require(data["nome"], "Nome é obrigatório").strip()
    _check_refs_produto(db, data)
    for field, value in data.items():
        setattr(db_produto, field, value)
    # Sem transação explícita: a troca do conjunto de unidades vai no mesmo commit
    if "unidade_ids" in produto.model_fields_set:
        _set_unidades(db, db_produto, produto.unidade_ids or [])
    db.commit()
    return get_produto(db, produto_id)


def delete_produto(db: Session, produto_id: int) -> models.Produto:
    produto = _get_or_404(db, models.Produto, produto_id, "Produto não encontrado")
    if db.query(models.ItemProposta.id).filter(models.ItemProposta.produto_id == produto_id).first():
        raise InUseError("Produto possui itens em propostas")
    db.delete(produto)
    db.commit()
    return produto


# --- Licitações ---
def get_licitacoes(db: Session) -> List[models.Licitacao]:
    return (
        db.query(models.Licitacao)
        .options(joinedload(models.Licitacao.municipio), selectinload(models.Licitacao.propostas))
        .order_by(models.Licitacao.id.desc())
        .all()
    )


def get_licitacao(db: Session, licitacao_id: int) -> models.Licitacao:
    licitacao = (
        db.query(models.Licitacao)
        .options(joinedload(models.Licitacao.municipio), selectinload(models.Licitacao.propostas))
        .filter(models.Licitacao.id == licitacao_id)
        .first()
    )
    if licitacao is None:
        raise NotFoundError("Licitação não encontrada")
    return licitacao


def _check_municipio(db: Session, municipio_id: int) -> None:
    if db.get(models.Municipio, municipio_id) is None:
        raise ValidationError("Município não encontrado")


def create_licitacao(db: Session, licitacao: schemas.LicitacaoCreate) -> models.Licitacao:
    nome = _require(licitacao.nome, "Nome é obrigatório")
    municipio_id = _require(licitacao.municipio_id, "Município é obrigatório")
    _check_municipio(db, municipio_id)
    db_licitacao = models.Licitacao(nome=nome.strip(), municipio_id=municipio_id, data=licitacao.data)
    db.add(db_licitacao)
    db.commit()
    return get_licitacao(db, db_licitacao.id)


def update_licitacao(db: Session, licitacao_id: int, licitacao: schemas.LicitacaoUpdate) -> models.Licitacao:
    db_licitacao = _get_or_404(db, models.Licitacao, licitacao_id, "Licitação não encontrada")
    data = licitacao.model_dump(exclude_unset=True)
    if "nome" in data:
        data["nome"] = _require(data["nome"], "Nome é obrigatório").strip()
    if "municipio_id" in data:
        _check_municipio(db, _require(data["municipio_id"], "Município é obrigatório"))
    for field, value in data.items():
        setattr(db_licitacao, field, value)
    db.commit()
    return get_licitacao(db, licitacao_id)


def delete_licitacao(db: Session, licitacao_id: int) -> models.Licitacao:
    licitacao = _get_or_404(db, models.Licitacao, licitacao_id, "Licitação não encontrada")
    if db.query(models.Proposta.id).filter(models.Proposta.licitacao_id == licitacao_id).first():
        raise InUseError("Licitação possui propostas vinculadas")
    db.delete(licitacao)
    db.commit()
    return licitacao


# --- Propostas ---
def _proposta_query(db: Session):
    return db.query(models.Proposta).options(
        joinedload(models.Proposta.licitacao).joinedload(models.Licitacao.municipio),
        joinedload(models.Proposta.fornecedor),
        selectinload(models.Proposta.itens).joinedload(models.ItemProposta.produto),
        selectinload(models.Proposta.itens).joinedload(models.ItemProposta.unidade),
    )


def get_propostas(db: Session) -> List[models.Proposta]:
    return _proposta_query(db).order_by(models.Proposta.created_at.desc(), models.Proposta.id.desc()).all()


def get_proposta(db: Session, proposta_id: int) -> models.Proposta:
    proposta = _proposta_query(db).filter(models.Proposta.id == proposta_id).first()
    if proposta is None:
        raise NotFoundError("Proposta não encontrada")
    return proposta


def _check_refs_proposta(db: Session, data: dict) -> None:
    if "licitacao_id" in data and db.get(models.Licitacao, data["licitacao_id"]) is None:
        raise ValidationError("Licitação não encontrada")
    if "fornecedor_id" in data and db.get(models.Fornecedor, data["fornecedor_id"]) is None:
        raise ValidationError("Fornecedor não encontrado")


def create_proposta(db: Session, proposta: schemas.PropostaCreate) -> models.Proposta:
    if not proposta.licitacao_id or not proposta.fornecedor_id:
        raise ValidationError("Dados incompletos")
    data = proposta.model_dump()
    _check_refs_proposta(db, data)
    db_proposta = models.Proposta(**data)
    db.add(db_proposta)
    db.commit()
    return get_proposta(db, db_proposta.id)


def update_proposta(db: Session, proposta_id: int, proposta: schemas.PropostaUpdate) -> models.Proposta:
    db_proposta = _get_or_404(db, models.Proposta, proposta_id, "Proposta não encontrada")
    data = proposta.model_dump(exclude_unset=True)
    for key in ("licitacao_id", "fornecedor_id"):
        if key in data:
            _require(data[key], "Dados incompletos")
    _check_refs_proposta(db, data)
    for field, value in data.items():
        setattr(db_proposta, field, value)
    db.commit()
    return get_proposta(db, proposta_id)


def delete_proposta(db: Session, proposta_id: int) -> models.Proposta:
    """Remove a proposta; os itens vão junto (cascade)."""
    proposta = _get_or_404(db, models.Proposta, proposta_id, "Proposta não encontrada")
    db.delete(proposta)
    db.commit()
    return proposta


# --- Itens de proposta ---
def get_item(db: Session, item_id: int) -> models.ItemProposta:
    item = (
        db.query(models.ItemProposta)
        .options(joinedload(models.ItemProposta.produto), joinedload(models.ItemProposta.unidade))
        .filter(models.ItemProposta.id == item_id)
        .first()
    )
    if item is None:
        raise NotFoundError("Item não encontrado")
    return item


def _check_refs_item(db: Session, data: dict) -> None:
    if "proposta_id" in data and db.get(models.Proposta, data["proposta_id"]) is None:
        raise ValidationError("Proposta não encontrada")
    if "produto_id" in data and db.get(models.Produto, data["produto_id"]) is None:
        raise ValidationError("Produto não encontrado")
    if data.get("unidade_id") is not None and db.get(models.UnidadeMedida, data["unidade_id"]) is None:
        raise ValidationError("Unidade não encontrada")


def create_item(db: Session, item: schemas.ItemCreate) -> models.ItemProposta:
    if not item.proposta_id or not item.produto_id or item.quantidade is None or item.preco_unitario is None:
        raise ValidationError("Dados incompletos")
    data = item.model_dump()
    _check_refs_item(db, data)
    db_item = models.ItemProposta(
        **data,
        preco_total=compute_preco_total(item.quantidade, item.preco_unitario),
    )
    db.add(db_item)
    db.commit()
    return get_item(db, db_item.id)


def update_item(db: Session, item_id: int, item: schemas.ItemUpdate) -> models.ItemProposta:
    db_item = _get_or_404(db, models.ItemProposta, item_id, "Item não encontrado")
    data = item.model_dump(exclude_unset=True)
    for key in ("produto_id", "quantidade", "preco_unitario"):
        if key in data:
            _require(data[key], "Dados incompletos")
    _check_refs_item(db, data)
    for field, value in data.items():
        setattr(db_item, field, value)
    db_item.preco_total = compute_preco_total(db_item.quantidade, db_item.preco_unitario)
    db.commit()
    return get_item(db, item_id)


def delete_item(db: Session, item_id: int) -> models.ItemProposta:
    item = get_item(db, item_id)
    db.delete(item)
    db.commit()
    return item
