"""
User registration and directory API endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from messenger.dependencies import CurrentUser, get_current_user, get_user_directory
from messenger.errors import FetchFailed, NotFound
from messenger.models.user import DirectoryEntry
from messenger.schemas.user import UserExistsResponse, UserRegister, UserResponse
from messenger.services.user_directory import UserDirectory
from messenger.utils.identity import safe_email

# Create router
router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: UserRegister,
    current_user: CurrentUser = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
):
    """
    Register the signed-in user

    - **firstName**: User's first name
    - **lastName**: User's last name

    Writes the user record and adds the user to the directory.
    """
    registered = await directory.register_user(
        current_user.email, payload.first_name, payload.last_name
    )
    if not registered:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to register user",
        )

    return UserResponse(
        email=current_user.identity,
        first_name=payload.first_name,
        last_name=payload.last_name,
        display_name=f"{payload.first_name} {payload.last_name}".strip(),
    )


@router.get("/exists/{email}", response_model=UserExistsResponse)
async def user_exists(
    email: str,
    directory: UserDirectory = Depends(get_user_directory),
):
    """Check whether a user is registered (email or safe identity)"""
    return UserExistsResponse(exists=await directory.user_exists(email))


@router.get("/me", response_model=UserResponse)
async def get_my_profile(
    current_user: CurrentUser = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
):
    """Get the signed-in user's record"""
    try:
        record = await directory.get_user(current_user.email)
    except NotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not registered")

    return UserResponse(
        email=current_user.identity,
        first_name=record.first_name,
        last_name=record.last_name,
        display_name=record.display_name,
    )


@router.get("", response_model=List[DirectoryEntry])
async def list_users(
    q: Optional[str] = Query(None, description="Name prefix to search for"),
    current_user: CurrentUser = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
):
    """
    List registered users

    With **q**, only users whose name starts with it are returned and the
    caller is left out.
    """
    try:
        if q is not None:
            return await directory.search_users(q, exclude_identity=safe_email(current_user.email))
        return await directory.list_all_users()
    except FetchFailed:
        return []
