from contextlib import contextmanager
from datetime import date
from typing import List, Optional
import logging
import os

from fastapi import BackgroundTasks, Depends, FastAPI, File, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.src import audit, auth, crud, models, relatorios, schemas, storage
from backend.src.database import engine, get_db
from backend.src.errors import AppError, StorageError, ValidationError
from backend.src.models import AuditAction, AuditEntity

logger = logging.getLogger("api")

# Create tables (idempotent)
try:
    models.Base.metadata.create_all(bind=engine)
except SQLAlchemyError:
    # Evita falha no import quando o DB não está disponível
    logger.warning("[db] não foi possível criar as tabelas na inicialização")

app = FastAPI(title="Licitações")

# CORS
origins = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost,http://127.0.0.1",
    ).split(",")
    if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=str(storage.UPLOAD_DIR), check_dir=False), name="uploads")


# Erros: sempre {"error": "..."}
@app.exception_handler(AppError)
def app_error_handler(_request: Request, exc: AppError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_response_payload())


@app.exception_handler(StarletteHTTPException)
def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
def request_validation_handler(_request: Request, exc: RequestValidationError):
    logger.info(f"[api] requisição inválida: {exc.errors()}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Dados inválidos"})


@contextmanager
def storage_errors(db: Session, message: str):
    """Converte falhas do banco em erro genérico, sem vazar detalhes."""
    try:
        yield
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[db] {message}")
        raise StorageError(message)


def _audit(
    background_tasks: BackgroundTasks,
    user: models.User,
    action: AuditAction,
    entity: AuditEntity,
    entity_id: Optional[int],
    details: str,
) -> None:
    # Agendado só depois do commit; roda após a resposta
    background_tasks.add_task(audit.record_log, user.id, action, entity, entity_id, details)


@app.get("/")
def read_root():
    return {"message": "API Licitações online"}


# Auth
@app.post("/login", response_model=schemas.Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    with storage_errors(db, "Erro ao autenticar"):
        user = auth.authenticate_user(db, form_data.username, form_data.password)
    logger.info(f"[auth] login user_id={user.id}")
    return schemas.Token(access_token=auth.create_access_token(user), user=schemas.User.model_validate(user))


# Usuários
@app.get("/users/me", response_model=schemas.User)
def read_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@app.get("/users", response_model=List[schemas.User])
def read_users(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar usuários"):
        return crud.get_users(db)


@app.post("/users", response_model=schemas.User)
def create_user(
    user: schemas.UserCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar usuário"):
        db_user = crud.create_user(db, user)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.USER, db_user.id, f"Criou usuário: {db_user.email}")
    return db_user


@app.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.get_current_admin),
):
    with storage_errors(db, "Erro ao deletar usuário"):
        user = crud.delete_user(db, user_id, admin)
    _audit(background_tasks, admin, AuditAction.DELETE, AuditEntity.USER, user_id, f"Deletou usuário: {user.email}")
    return {"message": "Usuário deletado com sucesso"}


# Auditoria
@app.get("/audit", response_model=List[schemas.AuditLog])
def read_audit(db: Session = Depends(get_db), admin: models.User = Depends(auth.get_current_admin)):
    with storage_errors(db, "Erro ao buscar logs"):
        return audit.get_logs(db)


# Municípios (autocomplete)
@app.get("/municipios", response_model=List[schemas.Municipio])
def read_municipios(
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao buscar municípios"):
        return crud.search_municipios(db, search)


# Categorias
@app.get("/categorias", response_model=List[schemas.Categoria])
def read_categorias(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar categorias"):
        return crud.get_categorias(db)


@app.post("/categorias", response_model=schemas.Categoria)
def create_categoria(
    categoria: schemas.CategoriaCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar categoria"):
        db_categoria = crud.create_categoria(db, categoria)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.CATEGORIA, db_categoria.id, f"Criou categoria: {db_categoria.nome}")
    return db_categoria


@app.delete("/categorias/{categoria_id}")
def delete_categoria(
    categoria_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao excluir categoria"):
        categoria = crud.delete_categoria(db, categoria_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.CATEGORIA, categoria_id, f"Excluiu categoria: {categoria.nome}")
    return {"success": True}


# Unidades de medida
@app.get("/unidades", response_model=List[schemas.Unidade])
def read_unidades(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar unidades"):
        return crud.get_unidades(db)


@app.post("/unidades", response_model=schemas.Unidade)
def create_unidade(
    unidade: schemas.UnidadeCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar unidade de medida"):
        db_unidade = crud.create_unidade(db, unidade)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.UNIDADE, db_unidade.id, f"Criou unidade: {db_unidade.sigla}")
    return db_unidade


@app.delete("/unidades/{unidade_id}")
def delete_unidade(
    unidade_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao excluir unidade"):
        unidade = crud.delete_unidade(db, unidade_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.UNIDADE, unidade_id, f"Excluiu unidade: {unidade.sigla}")
    return {"success": True}


# Fornecedores
@app.get("/fornecedores", response_model=List[schemas.Fornecedor])
def read_fornecedores(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar fornecedores"):
        return crud.get_fornecedores(db)


@app.post("/fornecedores", response_model=schemas.Fornecedor)
def create_fornecedor(
    fornecedor: schemas.FornecedorCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar fornecedor"):
        db_fornecedor = crud.create_fornecedor(db, fornecedor)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.FORNECEDOR, db_fornecedor.id, f"Criou fornecedor: {db_fornecedor.nome}")
    return db_fornecedor


@app.put("/fornecedores/{fornecedor_id}", response_model=schemas.Fornecedor)
def update_fornecedor(
    fornecedor_id: int,
    fornecedor: schemas.FornecedorUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao atualizar fornecedor"):
        db_fornecedor = crud.update_fornecedor(db, fornecedor_id, fornecedor)
    _audit(background_tasks, current_user, AuditAction.UPDATE, AuditEntity.FORNECEDOR, fornecedor_id, f"Atualizou fornecedor: {db_fornecedor.nome}")
    return db_fornecedor


@app.delete("/fornecedores/{fornecedor_id}")
def delete_fornecedor(
    fornecedor_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao excluir fornecedor"):
        fornecedor = crud.delete_fornecedor(db, fornecedor_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.FORNECEDOR, fornecedor_id, f"Excluiu fornecedor: {fornecedor.nome}")
    return {"success": True}


# Produtos
@app.get("/produtos", response_model=List[schemas.Produto])
def read_produtos(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar produtos"):
        return crud.get_produtos(db)


@app.post("/produtos", response_model=schemas.Produto)
def create_produto(
    produto: schemas.ProdutoCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar produto"):
        db_produto = crud.create_produto(db, produto)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.PRODUTO, db_produto.id, f"Criou produto: {db_produto.nome}")
    return db_produto


@app.put("/produtos/{produto_id}", response_model=schemas.Produto)
def update_produto(
    produto_id: int,
    produto: schemas.ProdutoUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao atualizar produto"):
        db_produto = crud.update_produto(db, produto_id, produto)
    _audit(background_tasks, current_user, AuditAction.UPDATE, AuditEntity.PRODUTO, produto_id, f"Atualizou produto: {db_produto.nome}")
    return db_produto


@app.delete("/produtos/{produto_id}")
def delete_produto(
    produto_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao deletar produto. Verifique se há propostas vinculadas."):
        produto = crud.delete_produto(db, produto_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.PRODUTO, produto_id, f"Excluiu produto: {produto.nome}")
    return {"success": True}


# Licitações
@app.get("/licitacoes", response_model=List[schemas.Licitacao])
def read_licitacoes(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar licitações"):
        return crud.get_licitacoes(db)


@app.get("/licitacoes/{licitacao_id}", response_model=schemas.Licitacao)
def read_licitacao(
    licitacao_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao buscar licitação"):
        return crud.get_licitacao(db, licitacao_id)


@app.post("/licitacoes", response_model=schemas.Licitacao)
def create_licitacao(
    licitacao: schemas.LicitacaoCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar licitação"):
        db_licitacao = crud.create_licitacao(db, licitacao)
    _audit(background_tasks, current_user, AuditAction.CREATE, AuditEntity.LICITACAO, db_licitacao.id, f"Criou licitação: {db_licitacao.nome}")
    return db_licitacao


@app.put("/licitacoes/{licitacao_id}", response_model=schemas.Licitacao)
def update_licitacao(
    licitacao_id: int,
    licitacao: schemas.LicitacaoUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao atualizar licitação"):
        db_licitacao = crud.update_licitacao(db, licitacao_id, licitacao)
    _audit(background_tasks, current_user, AuditAction.UPDATE, AuditEntity.LICITACAO, licitacao_id, f"Atualizou licitação: {db_licitacao.nome}")
    return db_licitacao


@app.delete("/licitacoes/{licitacao_id}")
def delete_licitacao(
    licitacao_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao deletar licitação. Verifique se há propostas vinculadas."):
        licitacao = crud.delete_licitacao(db, licitacao_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.LICITACAO, licitacao_id, f"Excluiu licitação: {licitacao.nome}")
    return {"success": True}


# Propostas
@app.get("/propostas", response_model=List[schemas.Proposta])
def read_propostas(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    with storage_errors(db, "Erro ao buscar propostas"):
        return crud.get_propostas(db)


@app.get("/propostas/{proposta_id}", response_model=schemas.Proposta)
def read_proposta(
    proposta_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao buscar proposta"):
        return crud.get_proposta(db, proposta_id)


@app.post("/propostas", response_model=schemas.Proposta)
def create_proposta(
    proposta: schemas.PropostaCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao criar proposta"):
        db_proposta = crud.create_proposta(db, proposta)
    _audit(
        background_tasks, current_user, AuditAction.CREATE, AuditEntity.PROPOSTA, db_proposta.id,
        f"Criou proposta #{db_proposta.id} de {db_proposta.fornecedor.nome} para {db_proposta.licitacao.nome}",
    )
    return db_proposta


@app.put("/propostas/{proposta_id}", response_model=schemas.Proposta)
def update_proposta(
    proposta_id: int,
    proposta: schemas.PropostaUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao atualizar proposta"):
        db_proposta = crud.update_proposta(db, proposta_id, proposta)
    _audit(background_tasks, current_user, AuditAction.UPDATE, AuditEntity.PROPOSTA, proposta_id, f"Atualizou proposta #{proposta_id}")
    return db_proposta


@app.delete("/propostas/{proposta_id}")
def delete_proposta(
    proposta_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao deletar proposta"):
        crud.delete_proposta(db, proposta_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.PROPOSTA, proposta_id, f"Excluiu proposta #{proposta_id}")
    return {"success": True}


# Itens de proposta
@app.post("/itens", response_model=schemas.ItemProposta)
def create_item(
    item: schemas.ItemCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao adicionar item"):
        db_item = crud.create_item(db, item)
    _audit(
        background_tasks, current_user, AuditAction.CREATE, AuditEntity.ITEM, db_item.id,
        f"Adicionou item {db_item.produto.nome} na proposta #{db_item.proposta_id}",
    )
    return db_item


@app.put("/itens/{item_id}", response_model=schemas.ItemProposta)
def update_item(
    item_id: int,
    item: schemas.ItemUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao atualizar item"):
        db_item = crud.update_item(db, item_id, item)
    _audit(
        background_tasks, current_user, AuditAction.UPDATE, AuditEntity.ITEM, item_id,
        f"Atualizou item {db_item.produto.nome} na proposta #{db_item.proposta_id}",
    )
    return db_item


@app.delete("/itens/{item_id}")
def delete_item(
    item_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao deletar item"):
        item = crud.get_item(db, item_id)
        details = f"Removeu item {item.produto.nome} da proposta #{item.proposta_id}"
        crud.delete_item(db, item_id)
    _audit(background_tasks, current_user, AuditAction.DELETE, AuditEntity.ITEM, item_id, details)
    return {"success": True}


# Relatórios e exportação
def relatorio_filtro(
    search: Optional[str] = None,
    date_start: Optional[date] = Query(None, alias="dateStart"),
    date_end: Optional[date] = Query(None, alias="dateEnd"),
    municipio: Optional[str] = None,
    fornecedor: Optional[str] = None,
    licitacao: Optional[str] = None,
) -> relatorios.RelatorioFiltro:
    return relatorios.RelatorioFiltro(
        search=search,
        date_start=date_start,
        date_end=date_end,
        municipio=municipio,
        fornecedor=fornecedor,
        licitacao=licitacao,
    )


@app.get("/relatorios/geral")
def relatorio_geral(
    filtro: relatorios.RelatorioFiltro = Depends(relatorio_filtro),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao gerar relatório"):
        return relatorios.relatorio_geral(db, filtro)


@app.get("/export")
def export_planilha(
    filtro: relatorios.RelatorioFiltro = Depends(relatorio_filtro),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    with storage_errors(db, "Erro ao exportar dados"):
        content = relatorios.build_workbook(db, filtro)
    filename = relatorios.export_filename()
    logger.info(f"[export] user_id={current_user.id} arquivo={filename} size={len(content)}")
    return Response(
        content=content,
        media_type=relatorios.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Upload de arquivos das propostas
@app.post("/upload")
def upload_arquivo(
    file: Optional[UploadFile] = File(None),
    current_user: models.User = Depends(auth.get_current_user),
):
    if file is None or not file.filename:
        raise ValidationError("Nenhum arquivo enviado")
    data = file.file.read()
    url = storage.store_upload(file.filename, data, file.content_type)
    return {"url": url}
