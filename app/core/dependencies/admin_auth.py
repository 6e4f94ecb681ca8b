from fastapi import Depends, HTTPException, status
from app.core.dependencies.auth import CurrentUser, get_current_user


def get_current_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized as administrator",
        )
    return current_user
