# gatehouse/routers/deps.py
"""
Caller identity. The identity provider in front of this service resolves the
user and forwards X-User-Id and X-Guard-Role; nothing here verifies tokens.
"""

from fastapi import Header, HTTPException, status

from gatehouse.services.roles import Guard, GuardRole


def get_current_guard(
    x_user_id: int = Header(..., alias="X-User-Id"),
    x_guard_role: str = Header(..., alias="X-Guard-Role"),
) -> Guard:
    try:
        role = GuardRole(x_guard_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail=f"Unknown guard role '{x_guard_role}'")
    return Guard(user_id=x_user_id, role=role)
