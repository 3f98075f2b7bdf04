import itertools

import pytest

from permissions import REQUIRED_PERMISSION, SELF_ACTION, Decision, Operation, Permission, authorize
from security import Identity

ME = "64b000000000000000000001"
OTHER = "64b000000000000000000002"

ALL_PERMISSIONS = frozenset(p.value for p in Permission)


def identity(*permisos):
    return Identity(id=ME, permisos=frozenset(permisos))


def test_every_operation_has_a_rule():
    assert set(REQUIRED_PERMISSION) == set(Operation)


def test_permission_strings():
    assert Permission.CREATE_BOOK.value == "crear_libro"
    assert Permission.UPDATE_BOOK.value == "modificar_libro"
    assert Permission.DISABLE_BOOK.value == "inhabilitar_libro"
    assert Permission.UPDATE_USER.value == "modificar_usuario"
    assert Permission.DISABLE_USER.value == "inhabilitar_usuario"


def test_unknown_permission_strings_are_ignored():
    assert Permission.parse(["crear_libro", "lector", "root"]) == {Permission.CREATE_BOOK}


@pytest.mark.parametrize("operation", [Operation.CREATE_BOOK, Operation.UPDATE_BOOK, Operation.DISABLE_BOOK])
def test_book_operations_need_their_permission(operation):
    required = REQUIRED_PERMISSION[operation].value
    assert authorize(identity(), operation) is Decision.DENY
    assert authorize(identity(required), operation) is Decision.ALLOW
    others = ALL_PERMISSIONS - {required}
    assert authorize(identity(*others), operation) is Decision.DENY


def test_book_operations_have_no_owner():
    # a matching target id must not stand in for the permission
    assert authorize(identity(), Operation.UPDATE_BOOK, ME) is Decision.DENY


def test_self_update_needs_no_permission():
    assert authorize(identity(), Operation.UPDATE_USER, ME) is Decision.ALLOW
    assert authorize(identity(), Operation.DISABLE_USER, ME) is Decision.ALLOW


def test_foreign_user_needs_permission():
    assert authorize(identity(), Operation.UPDATE_USER, OTHER) is Decision.DENY
    assert authorize(identity("modificar_usuario"), Operation.UPDATE_USER, OTHER) is Decision.ALLOW
    assert authorize(identity("modificar_usuario"), Operation.DISABLE_USER, OTHER) is Decision.DENY
    assert authorize(identity("inhabilitar_usuario"), Operation.DISABLE_USER, OTHER) is Decision.ALLOW


def test_granting_permissions_has_no_self_clause():
    assert authorize(identity(), Operation.GRANT_PERMISSIONS, ME) is Decision.DENY
    assert authorize(identity("modificar_usuario"), Operation.GRANT_PERMISSIONS, ME) is Decision.ALLOW


def test_any_session_may_reserve():
    assert authorize(identity(), Operation.CREATE_RESERVATION) is Decision.ALLOW


def test_reservation_owner_may_end_it():
    assert authorize(identity(), Operation.END_RESERVATION, ME) is Decision.ALLOW
    assert authorize(identity(), Operation.END_RESERVATION, OTHER) is Decision.DENY
    assert authorize(identity("finalizar_reserva"), Operation.END_RESERVATION, OTHER) is Decision.ALLOW


def _powerset(items):
    items = list(items)
    return itertools.chain.from_iterable(itertools.combinations(items, n) for n in range(len(items) + 1))


@pytest.mark.parametrize("operation", list(Operation))
def test_authorization_completeness(operation):
    required = REQUIRED_PERMISSION[operation]
    for held in _powerset(ALL_PERMISSIONS):
        for target in (ME, OTHER, None):
            is_self = operation in SELF_ACTION and target == ME
            has_permission = required is None or required.value in held
            expected = Decision.ALLOW if (is_self or has_permission) else Decision.DENY
            assert authorize(identity(*held), operation, target) is expected
