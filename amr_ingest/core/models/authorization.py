"""
AuthorizationContext model: who is importing and where they may write.
"""

from pydantic import BaseModel, Field


class AuthorizationContext(BaseModel):
    """
    Supplied by the host platform for every import.

    Attributes:
        actor: Acting user (recorded as the committing actor)
        organization: Owning organization, used as default template owner
        allowed_tables: Target tables the import may write
    """

    actor: str = Field(..., min_length=1)
    organization: str | None = None
    allowed_tables: frozenset[str] = frozenset({"isolate", "ast_result"})

    class Config:
        frozen = True

    def can_write(self, table: str) -> bool:
        return table in self.allowed_tables
