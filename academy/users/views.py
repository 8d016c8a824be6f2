from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from academy.utils.rate_limit import optional_rate_limit
from academy.users import service as users_service

router = APIRouter(prefix="/api/auth", tags=["Auth API"])

class RegisterBody(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    email: EmailStr
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")

@router.post("/register", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def register(body: RegisterBody):
    return users_service.register_user(
        user_id=body.user_id,
        email=str(body.email),
        first_name=body.first_name,
        last_name=body.last_name,
    )
