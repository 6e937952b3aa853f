from typing import Protocol, runtime_checkable

from fastapi import HTTPException, status


@runtime_checkable
class Ownable(Protocol):
    """Anything whose owner can be compared against the acting user."""

    @property
    def owner_id(self) -> int: ...


def is_owner_or_admin(user, resource: Ownable) -> bool:
    if user is None or resource is None:
        return False
    if user.is_admin:
        return True
    return resource.owner_id == user.id


def require_owner_or_admin(user, resource: Ownable):
    if not is_owner_or_admin(user, resource):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: insufficient permissions"
        )
