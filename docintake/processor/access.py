from collections.abc import Iterable

from docintake.database.models import DocumentRecord
from docintake.processor.models import SYSTEM_ROLE, Principal


class AccessPolicy:
    """Single authorization point for document-level checks.

    Soft-deleted documents are never accessible. Elevated roles (and the
    system principal) bypass ownership.
    """

    def __init__(self, elevated_roles: Iterable[str]) -> None:
        self._elevated_roles = frozenset(elevated_roles) | {SYSTEM_ROLE}

    def is_elevated(self, principal: Principal) -> bool:
        return bool(principal.roles & self._elevated_roles)

    def is_owner(self, document: DocumentRecord, principal: Principal) -> bool:
        return bool(principal.user_id) and principal.user_id == document.user_id

    def can_access(self, document: DocumentRecord, principal: Principal) -> bool:
        """Read access: owner, public document, or elevated caller."""
        if document.is_deleted:
            return False
        return (
            self.is_owner(document, principal)
            or document.is_public
            or self.is_elevated(principal)
        )

    def can_modify(self, document: DocumentRecord, principal: Principal) -> bool:
        """Write access: owner or elevated caller. Visibility grants nothing here."""
        if document.is_deleted:
            return False
        return self.is_owner(document, principal) or self.is_elevated(principal)

    def can_view_history(self, document: DocumentRecord, principal: Principal) -> bool:
        """Audit history stays visible to owner and elevated callers after a soft delete."""
        return self.is_owner(document, principal) or self.is_elevated(principal)
