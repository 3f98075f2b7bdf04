"""
Database Schemas for the Library API

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase class name.

Collections:
- User
- Book
- Reservation

Field aliases are the persisted (and wire) names.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime, timezone

from bson import ObjectId


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    model_config = ConfigDict(populate_by_name=True)

    nombre: str = Field(..., description="Display name")
    correo: str = Field(..., description="Unique email address")
    contrasena: str = Field(..., alias="contraseña", description="Credential digest, never plaintext")
    permisos: List[str] = Field(default_factory=list, description="Permission strings")
    habilitado: bool = Field(True, description="False once soft-deleted")


class Book(BaseModel):
    """
    Books collection schema
    Collection name: "book"
    """
    model_config = ConfigDict(populate_by_name=True)

    titulo: str = Field(..., description="Book title")
    autor: str = Field(..., description="Primary author")
    genero: Optional[str] = Field(None, description="Genre")
    editorial: Optional[str] = Field(None, description="Publisher")
    fecha_publicacion: Optional[datetime] = Field(None, alias="fechaPublicacion", description="Publication date")
    disponibilidad: bool = Field(True, description="False while an open reservation exists")
    habilitado: bool = Field(True, description="False once soft-deleted")


class Reservation(BaseModel):
    """
    Reservations collection schema
    Collection name: "reservation"
    """
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    usuario: ObjectId = Field(..., description="Owning User ObjectId")
    libro: ObjectId = Field(..., description="Reserved Book ObjectId")
    fecha_reserva: datetime = Field(default_factory=utcnow, alias="fechaReserva")
    fecha_entrega: datetime = Field(..., alias="fechaEntrega", description="Due date/time (UTC)")
    devuelto: bool = Field(False, description="True once the reservation is ended")
