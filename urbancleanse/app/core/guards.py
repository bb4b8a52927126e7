"""
Security guards for role-based and ownership-based access control.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from urbancleanse.app.models.enums import UserRole, COLLECTOR_ROLES
from urbancleanse.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin/requests")
        async def list_requests(current_user: dict = Depends(require_role([UserRole.OPERATOR]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_operator = require_role([UserRole.OPERATOR])
require_customer = require_role([UserRole.CUSTOMER])
require_collector = require_role(list(COLLECTOR_ROLES))


def is_operator(current_user: dict) -> bool:
    return current_user.get("role") == UserRole.OPERATOR.value


def is_collector(current_user: dict) -> bool:
    return current_user.get("role") in {r.value for r in COLLECTOR_ROLES}


class OwnershipGuard:
    """
    Ownership guard for customer bins/requests and collector routes.

    Operators may access everything; other principals only what they own.
    """

    def enforce(
        self,
        resource_owner_id: Optional[int],
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Raise 403 unless the principal is an operator or owns the resource.
        """
        if is_operator(current_user):
            return
        if resource_owner_id is None or current_user.get("user_id") != resource_owner_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You do not have permission to access this {resource_name}."
            )

    def filter_by_ownership(self, current_user: dict) -> Optional[int]:
        """
        Owner id to filter queries by, or None for operators (no filtering).
        """
        if is_operator(current_user):
            return None
        return current_user.get("user_id")


ownership_guard = OwnershipGuard()
