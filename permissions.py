"""Authorization guard.

``authorize`` answers ALLOW when the caller acts on itself (where the
operation has a self clause) or holds the permission the operation
requires.  Permission strings are parsed into ``Permission`` here; strings
that are not known permissions never grant anything.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from security import Identity

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    CREATE_BOOK = "crear_libro"
    UPDATE_BOOK = "modificar_libro"
    DISABLE_BOOK = "inhabilitar_libro"
    UPDATE_USER = "modificar_usuario"
    DISABLE_USER = "inhabilitar_usuario"
    END_RESERVATION = "finalizar_reserva"

    @classmethod
    def parse(cls, values: Iterable[str]) -> FrozenSet["Permission"]:
        known = {p.value: p for p in cls}
        return frozenset(known[v] for v in values if v in known)


class Operation(Enum):
    CREATE_BOOK = "create_book"
    UPDATE_BOOK = "update_book"
    DISABLE_BOOK = "disable_book"
    UPDATE_USER = "update_user"
    DISABLE_USER = "disable_user"
    GRANT_PERMISSIONS = "grant_permissions"
    CREATE_RESERVATION = "create_reservation"
    END_RESERVATION = "end_reservation"


class Decision(Enum):
    ALLOW = "allow"
    DENY = "deny"


# None: any authenticated identity may perform the operation
REQUIRED_PERMISSION: Dict[Operation, Optional[Permission]] = {
    Operation.CREATE_BOOK: Permission.CREATE_BOOK,
    Operation.UPDATE_BOOK: Permission.UPDATE_BOOK,
    Operation.DISABLE_BOOK: Permission.DISABLE_BOOK,
    Operation.UPDATE_USER: Permission.UPDATE_USER,
    Operation.DISABLE_USER: Permission.DISABLE_USER,
    Operation.GRANT_PERMISSIONS: Permission.UPDATE_USER,
    Operation.CREATE_RESERVATION: None,
    Operation.END_RESERVATION: Permission.END_RESERVATION,
}

# Operations where acting on one's own record (or own reservation) is enough
SELF_ACTION = frozenset({
    Operation.UPDATE_USER,
    Operation.DISABLE_USER,
    Operation.END_RESERVATION,
})


def authorize(identity: Identity, operation: Operation, target_user_id: Optional[str] = None) -> Decision:
    """Decide whether ``identity`` may perform ``operation``.

    ``target_user_id`` is the user the operation acts on: the user record
    itself for user operations, the reservation owner for reservation ones.
    """
    if operation in SELF_ACTION and target_user_id is not None and str(target_user_id) == identity.id:
        return Decision.ALLOW

    required = REQUIRED_PERMISSION[operation]
    if required is None or required in Permission.parse(identity.permisos):
        return Decision.ALLOW

    logger.info("Denied %s for user %s (missing %s)", operation.value, identity.id, required.value)
    return Decision.DENY
