import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from database import BOOKS, USERS, active, parse_id, to_str_id
from errors import DuplicateKey, LibraryError, StoreUnavailable, ValidationFailed


def test_active_adds_enabled_predicate():
    assert active() == {"habilitado": True}
    assert active({"autor": "Borges"}) == {"autor": "Borges", "habilitado": True}


def test_active_does_not_mutate_query():
    query = {"autor": "Borges"}
    active(query)
    assert query == {"autor": "Borges"}


def test_parse_id_rejects_malformed_ids():
    with pytest.raises(ValidationFailed):
        parse_id("not-an-object-id")
    with pytest.raises(ValidationFailed):
        parse_id(None)


def test_parse_id_accepts_strings_and_object_ids():
    oid = ObjectId()
    assert parse_id(str(oid)) == oid
    assert parse_id(oid) is oid


def test_to_str_id_converts_nested_references():
    user_id, book_id = ObjectId(), ObjectId()
    doc = {"_id": ObjectId(), "libro": book_id, "usuario": {"_id": user_id, "nombre": "Ana"}}
    out = to_str_id(doc)
    assert "_id" not in out
    assert out["libro"] == str(book_id)
    assert out["usuario"] == {"id": str(user_id), "nombre": "Ana"}


def test_insert_sets_timestamps(store):
    doc = store.insert(BOOKS, {"titulo": "B", "autor": "A", "habilitado": True})
    assert isinstance(doc["_id"], ObjectId)
    assert doc["created_at"] is not None
    assert doc["updated_at"] is not None


def test_reads_hide_disabled_documents(store):
    doc = store.insert(BOOKS, {"titulo": "Oculto", "autor": "A", "habilitado": False})
    assert store.find_by_id(BOOKS, doc["_id"]) is None
    assert store.find_by_id(BOOKS, doc["_id"], active_only=False) is not None
    assert store.find(BOOKS, {}) == []


def test_update_by_id_returns_none_when_nothing_matches(store):
    assert store.update_by_id(BOOKS, ObjectId(), {"titulo": "X"}) is None


def test_duplicate_email_raises_duplicate_key(store):
    store.insert(USERS, {"correo": "a@a.com", "habilitado": True})
    with pytest.raises(DuplicateKey):
        store.insert(USERS, {"correo": "a@a.com", "habilitado": True})


class UnreachableCollection:
    def find_one(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")


def test_connection_failure_is_not_reported_as_missing(store, monkeypatch):
    monkeypatch.setattr(store, "db", {BOOKS: UnreachableCollection()})
    with pytest.raises(StoreUnavailable):
        store.find_by_id(BOOKS, ObjectId())


class FailingCollection:
    def find_one(self, *args, **kwargs):
        raise OperationFailure("auth failed on admin.secret_collection")


def test_driver_error_text_stays_out_of_the_message(store, monkeypatch):
    monkeypatch.setattr(store, "db", {BOOKS: FailingCollection()})
    with pytest.raises(LibraryError) as exc:
        store.find_by_id(BOOKS, ObjectId())
    assert exc.value.message == "Error interno del servidor"
    assert exc.value.status_code == 500


def test_delete_many_clears_collection(store):
    store.insert(BOOKS, {"titulo": "B1", "autor": "A", "habilitado": True})
    store.insert(BOOKS, {"titulo": "B2", "autor": "A", "habilitado": False})
    assert store.delete_many(BOOKS, {}) == 2
    assert store.find(BOOKS, {}, active_only=False) == []


def test_populate_replaces_reference_with_summary(store):
    user = store.insert(USERS, {"nombre": "Ana", "correo": "ana@test.com", "contraseña": "x", "habilitado": True})
    docs = [{"usuario": user["_id"]}, {"usuario": ObjectId()}]
    store.populate(docs, "usuario", USERS, ["nombre", "correo"])
    assert docs[0]["usuario"] == {"_id": user["_id"], "nombre": "Ana", "correo": "ana@test.com"}
    assert docs[1]["usuario"] is None
