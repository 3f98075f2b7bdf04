import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from database import BOOKS, USERS, Store
from errors import NotFound, Unauthenticated, ValidationFailed
from schemas import Book as BookSchema, User as UserSchema
from security import CredentialHasher

logger = logging.getLogger(__name__)

# Fields the generic update path may touch. Availability belongs to the
# reservation engine, the credential and the enabled flag have their own paths.
BOOK_UPDATABLE = frozenset({"titulo", "autor", "genero", "editorial", "fechaPublicacion"})
USER_UPDATABLE = frozenset({"nombre", "correo", "permisos"})


def _validation_message(err: ValidationError) -> str:
    first = err.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ()))
    return f"{where}: {first.get('msg')}" if where else first.get("msg", "Datos inválidos")


def _normalize_email(correo: str) -> str:
    return correo.strip().lower()


def _partial(fields: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValidationFailed(f"Campos no modificables: {', '.join(sorted(unknown))}")
    if not fields:
        raise ValidationFailed("No hay campos para actualizar")
    return dict(fields)


class UserService:
    def __init__(self, store: Store, hasher: CredentialHasher):
        self.store = store
        self.hasher = hasher

    def create(self, nombre: str, correo: str, contrasena: str, permisos: Optional[List[str]] = None) -> Dict[str, Any]:
        if not contrasena:
            raise ValidationFailed("contraseña: requerida")
        try:
            user = UserSchema(
                nombre=nombre,
                correo=_normalize_email(correo or ""),
                contrasena=self.hasher.hash(contrasena),
                permisos=list(permisos or []),
            )
        except ValidationError as e:
            raise ValidationFailed(_validation_message(e))
        if not user.nombre or not user.correo:
            raise ValidationFailed("nombre y correo son obligatorios")
        doc = self.store.insert(USERS, user)
        logger.info("User %s registered", doc["_id"])
        return doc

    def authenticate(self, correo: str, contrasena: str) -> Dict[str, Any]:
        user = self.store.find_one(USERS, {"correo": _normalize_email(correo)})
        if not user:
            logger.warning("Login attempt for unknown or disabled account")
            raise Unauthenticated("Usuario no encontrado")
        if not self.hasher.verify(contrasena, user["contraseña"]):
            logger.warning("Invalid credentials for user %s", user["_id"])
            raise Unauthenticated("Credenciales inválidas")
        return user

    def read_by_id(self, user_id: Any) -> Dict[str, Any]:
        user = self.store.find_by_id(USERS, user_id)
        if not user:
            raise NotFound("Usuario no encontrado")
        return user

    def list(self, nombre: Optional[str] = None, correo: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if correo:
            query["correo"] = _normalize_email(correo)
        if nombre:
            query["nombre"] = {"$regex": re.escape(nombre), "$options": "i"}
        return self.store.find(USERS, query, sort="nombre")

    def update(self, user_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
        update = _partial(fields, USER_UPDATABLE)
        for required in ("nombre", "correo"):
            if required in update and not update[required]:
                raise ValidationFailed(f"{required}: no puede estar vacío")
        if "permisos" in update and update["permisos"] is None:
            raise ValidationFailed("permisos: debe ser una lista")
        if "correo" in update:
            update["correo"] = _normalize_email(update["correo"])
        user = self.store.update_by_id(USERS, user_id, update)
        if not user:
            raise NotFound("Usuario no encontrado")
        return user

    def soft_delete(self, user_id: Any) -> Dict[str, Any]:
        user = self.store.update_by_id(USERS, user_id, {"habilitado": False}, active_only=False)
        if not user:
            raise NotFound("Usuario no encontrado")
        logger.info("User %s disabled", user["_id"])
        return user


class BookService:
    def __init__(self, store: Store):
        self.store = store

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = {k: v for k, v in fields.items() if k in BOOK_UPDATABLE}
        try:
            book = BookSchema(**data)
        except ValidationError as e:
            raise ValidationFailed(_validation_message(e))
        if not book.titulo or not book.autor:
            raise ValidationFailed("titulo y autor son obligatorios")
        doc = self.store.insert(BOOKS, book)
        logger.info("Book %s created", doc["_id"])
        return doc

    def read_by_id(self, book_id: Any) -> Dict[str, Any]:
        book = self.store.find_by_id(BOOKS, book_id)
        if not book:
            raise NotFound("Libro no encontrado")
        return book

    def list(
        self,
        titulo: Optional[str] = None,
        autor: Optional[str] = None,
        genero: Optional[str] = None,
        editorial: Optional[str] = None,
        fecha_publicacion: Optional[datetime] = None,
        disponibilidad: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if autor:
            query["autor"] = autor
        if genero:
            query["genero"] = genero
        if editorial:
            query["editorial"] = editorial
        if fecha_publicacion is not None:
            query["fechaPublicacion"] = fecha_publicacion
        if disponibilidad is not None:
            query["disponibilidad"] = disponibilidad
        if titulo:
            query["titulo"] = {"$regex": re.escape(titulo), "$options": "i"}
        return self.store.find(BOOKS, query, sort="titulo")

    def update(self, book_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
        update = _partial(fields, BOOK_UPDATABLE)
        for required in ("titulo", "autor"):
            if required in update and not update[required]:
                raise ValidationFailed(f"{required}: no puede estar vacío")
        book = self.store.update_by_id(BOOKS, book_id, update)
        if not book:
            raise NotFound("Libro no encontrado")
        return book

    def soft_delete(self, book_id: Any) -> Dict[str, Any]:
        book = self.store.update_by_id(BOOKS, book_id, {"habilitado": False}, active_only=False)
        if not book:
            raise NotFound("Libro no encontrado")
        logger.info("Book %s disabled", book["_id"])
        return book
