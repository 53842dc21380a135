"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from backed.db.enums import PrincipalRole


class Principal(BaseModel):
    """
    Authenticated caller resolved from the identity provider's token.

    Built per request by the ``get_current_principal`` dependency.
    """
    user_id: UUID
    role: PrincipalRole
