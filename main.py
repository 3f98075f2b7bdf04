import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from database import USERS, Store, get_store, to_str_id
from errors import Forbidden, LibraryError, StoreUnavailable, Unauthenticated, ValidationFailed
from permissions import Decision, Operation, authorize
from reservations import ReservationEngine
from security import CredentialHasher, Identity, TokenIssuer
from services import BookService, UserService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# Helpers
def user_out(doc: Dict[str, Any]):
    doc = to_str_id(doc)
    doc.pop("contraseña", None)
    return doc


def _validation_message(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "Datos inválidos"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    return f"{'.'.join(loc)}: {first.get('msg')}" if loc else first.get("msg", "Datos inválidos")


# Request Models
class CreateUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nombre: str
    correo: str
    contrasena: str = Field(..., alias="contraseña")
    permisos: List[str] = []


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    correo: str
    contrasena: str = Field(..., alias="contraseña")


class UpdateUser(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nombre: Optional[str] = None
    correo: Optional[str] = None
    permisos: Optional[List[str]] = None


class CreateBook(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    titulo: str
    autor: str
    genero: Optional[str] = None
    editorial: Optional[str] = None
    fecha_publicacion: Optional[datetime] = Field(None, alias="fechaPublicacion")


class UpdateBook(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    titulo: Optional[str] = None
    autor: Optional[str] = None
    genero: Optional[str] = None
    editorial: Optional[str] = None
    fecha_publicacion: Optional[datetime] = Field(None, alias="fechaPublicacion")


class CreateReservation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    libro: str
    fecha_reserva: Optional[datetime] = Field(None, alias="fechaReserva")
    fecha_entrega: Optional[datetime] = Field(None, alias="fechaEntrega")


# Dependencies
bearer = HTTPBearer(auto_error=False)


def get_hasher() -> CredentialHasher:
    return CredentialHasher()


def get_tokens() -> TokenIssuer:
    return TokenIssuer()


def get_user_service(store: Store = Depends(get_store), hasher: CredentialHasher = Depends(get_hasher)) -> UserService:
    return UserService(store, hasher)


def get_book_service(store: Store = Depends(get_store)) -> BookService:
    return BookService(store)


def get_engine(store: Store = Depends(get_store)) -> ReservationEngine:
    return ReservationEngine(store)


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    tokens: TokenIssuer = Depends(get_tokens),
    store: Store = Depends(get_store),
) -> Identity:
    if credentials is None:
        raise Unauthenticated()
    identity = tokens.verify(credentials.credentials)
    try:
        user = store.find_by_id(USERS, identity.id)
    except ValidationFailed:
        raise Unauthenticated("Token inválido")
    # a token outlives its user being disabled
    if user is None:
        logger.warning("Token presented for disabled or missing user %s", identity.id)
        raise Unauthenticated("Usuario deshabilitado")
    return identity


def require(identity: Identity, operation: Operation, target_user_id: Optional[str] = None) -> None:
    if authorize(identity, operation, target_user_id) is Decision.DENY:
        raise Forbidden()


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    try:
        store.ping()
        store.ensure_indexes()
    except StoreUnavailable:
        logger.critical("Cannot connect to MongoDB at %s, exiting", settings.database_url)
        raise SystemExit(1)
    logger.info("Connected to MongoDB database %s", settings.database_name)
    yield


app = FastAPI(title="Library API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origin.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": _validation_message(exc.errors())})


@app.get("/")
def read_root():
    return {"message": "API Biblioteca funcionando"}


@app.get("/health")
def health(store: Store = Depends(get_store)):
    store.ping()
    return {"backend": "ok", "database": "ok", "database_name": settings.database_name}


# Users Endpoints
@app.post("/api/users", status_code=201)
def create_user(payload: CreateUser, users: UserService = Depends(get_user_service)):
    user = users.create(payload.nombre, payload.correo, payload.contrasena, payload.permisos)
    return {"message": "Usuario creado", "user": user_out(user)}


@app.post("/api/login")
def login(
    payload: LoginRequest,
    users: UserService = Depends(get_user_service),
    tokens: TokenIssuer = Depends(get_tokens),
):
    user = users.authenticate(payload.correo, payload.contrasena)
    token = tokens.issue(str(user["_id"]), user.get("permisos") or [])
    return {"message": "Login exitoso", "token": token}


@app.get("/api/users")
def list_users(
    nombre: Optional[str] = None,
    correo: Optional[str] = None,
    identity: Identity = Depends(current_identity),
    users: UserService = Depends(get_user_service),
):
    docs = users.list(nombre=nombre, correo=correo)
    return {"message": "Listado de usuarios", "users": [user_out(d) for d in docs]}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, identity: Identity = Depends(current_identity), users: UserService = Depends(get_user_service)):
    return {"message": "Usuario encontrado", "user": user_out(users.read_by_id(user_id))}


@app.put("/api/users/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUser,
    identity: Identity = Depends(current_identity),
    users: UserService = Depends(get_user_service),
):
    update = payload.model_dump(exclude_unset=True)
    require(identity, Operation.UPDATE_USER, user_id)
    if "permisos" in update:
        require(identity, Operation.GRANT_PERMISSIONS)
    user = users.update(user_id, update)
    return {"message": "Usuario actualizado", "user": user_out(user)}


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, identity: Identity = Depends(current_identity), users: UserService = Depends(get_user_service)):
    require(identity, Operation.DISABLE_USER, user_id)
    user = users.soft_delete(user_id)
    return {"message": "Usuario deshabilitado", "user": user_out(user)}


# Books Endpoints
@app.get("/api/books")
def list_books(
    titulo: Optional[str] = None,
    autor: Optional[str] = None,
    genero: Optional[str] = None,
    editorial: Optional[str] = None,
    fecha_publicacion: Optional[datetime] = Query(None, alias="fechaPublicacion"),
    disponibilidad: Optional[bool] = None,
    books: BookService = Depends(get_book_service),
):
    docs = books.list(
        titulo=titulo,
        autor=autor,
        genero=genero,
        editorial=editorial,
        fecha_publicacion=fecha_publicacion,
        disponibilidad=disponibilidad,
    )
    return {"message": "Listado de libros", "books": [to_str_id(d) for d in docs]}


@app.post("/api/books", status_code=201)
def create_book(payload: CreateBook, identity: Identity = Depends(current_identity), books: BookService = Depends(get_book_service)):
    require(identity, Operation.CREATE_BOOK)
    book = books.create(payload.model_dump(by_alias=True))
    return {"message": "Libro creado", "book": to_str_id(book)}


@app.get("/api/books/{book_id}")
def get_book(book_id: str, books: BookService = Depends(get_book_service)):
    return {"message": "Libro encontrado", "book": to_str_id(books.read_by_id(book_id))}


@app.put("/api/books/{book_id}")
def update_book(
    book_id: str,
    payload: UpdateBook,
    identity: Identity = Depends(current_identity),
    books: BookService = Depends(get_book_service),
):
    require(identity, Operation.UPDATE_BOOK)
    book = books.update(book_id, payload.model_dump(by_alias=True, exclude_unset=True))
    return {"message": "Libro actualizado", "book": to_str_id(book)}


@app.delete("/api/books/{book_id}")
def delete_book(book_id: str, identity: Identity = Depends(current_identity), books: BookService = Depends(get_book_service)):
    require(identity, Operation.DISABLE_BOOK)
    book = books.soft_delete(book_id)
    return {"message": "Libro deshabilitado", "book": to_str_id(book)}


# Reservations Endpoints
@app.post("/api/reservations", status_code=201)
def create_reservation(
    payload: CreateReservation,
    identity: Identity = Depends(current_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    require(identity, Operation.CREATE_RESERVATION)
    reservation = engine.create_reservation(
        identity.id,
        payload.libro,
        fecha_entrega=payload.fecha_entrega,
        fecha_reserva=payload.fecha_reserva,
    )
    return {"message": "Reserva creada", "reservation": to_str_id(reservation)}


@app.put("/api/reservations/{reservation_id}/end")
def end_reservation(
    reservation_id: str,
    identity: Identity = Depends(current_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    reservation = engine.read_reservation(reservation_id)
    require(identity, Operation.END_RESERVATION, str(reservation["usuario"]))
    reservation = engine.end_reservation(reservation_id)
    return {"message": "Reserva finalizada", "reservation": to_str_id(reservation)}


@app.get("/api/books/{book_id}/reservations")
def list_reservations_by_book(
    book_id: str,
    identity: Identity = Depends(current_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    docs = engine.list_reservations_by_book(book_id)
    return {"message": "Historial de reservas del libro", "reservations": [to_str_id(d) for d in docs]}


@app.get("/api/users/{user_id}/reservations")
def list_reservations_by_user(
    user_id: str,
    identity: Identity = Depends(current_identity),
    engine: ReservationEngine = Depends(get_engine),
):
    docs = engine.list_reservations_by_user(user_id)
    return {"message": "Historial de reservas del usuario", "reservations": [to_str_id(d) for d in docs]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.port)
