import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from core.firebase import get_db, verify_id_token
from core.settings import USERS_COLLECTION, CompanySettings, EmployeeSettings
from db.shift_repository import FirestoreShiftRepository, ShiftRepository

logger = logging.getLogger(__name__)

# Standard credentials exception
CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

# Roles Allowed To Correct Other Employees' Shifts
MANAGER_ROLES = ["manager", "owner"]


# Matches Firebase Auth Token To A Firestore User Profile
async def get_current_user(request: Request) -> dict:

    # 1) Extract & Analyze Authorization Header
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise CREDENTIALS_EXCEPTION
    token = auth_header.split(" ", 1)[1]

    # 2) Verify This Points to a Real User Account
    try:
        decoded = verify_id_token(token)
    except Exception:
        raise CREDENTIALS_EXCEPTION
    uid = decoded.get("uid")
    if not uid:
        raise CREDENTIALS_EXCEPTION

    # 3) Fetch the Firestore user profile
    try:
        snapshot = get_db().collection(USERS_COLLECTION).document(uid).get()
    except Exception as e:
        logger.error(f"Firestore error fetching profile for {uid}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not fetch user profile.",
        )
    if not snapshot.exists:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found in Firestore",
        )
    profile = snapshot.to_dict()

    # 4) Extract Critical Information
    return {
        "uid": uid,
        "email": profile.get("email", decoded.get("email", "")),
        "role": profile.get("role", "employee"),
        "settings": profile.get("settings") or {},
        "companySettings": profile.get("companySettings") or {},
    }


def employee_settings_for(user: dict) -> EmployeeSettings:
    return EmployeeSettings.model_validate(user.get("settings") or {})


def company_settings_for(user: dict) -> CompanySettings:
    return CompanySettings.model_validate(user.get("companySettings") or {})


def is_manager(user: dict) -> bool:
    return user.get("role") in MANAGER_ROLES


@lru_cache
def _firestore_repository() -> FirestoreShiftRepository:
    return FirestoreShiftRepository(get_db())


def get_shift_repository() -> ShiftRepository:
    return _firestore_repository()


CurrentUser = Annotated[dict, Depends(get_current_user)]
Repository = Annotated[ShiftRepository, Depends(get_shift_repository)]
