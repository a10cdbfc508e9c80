from fastapi import APIRouter, Depends

from clinic.auth.dependencies import get_actor_role, get_current_user
from clinic.models.user import User

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"email": current_user.email, "role": get_actor_role(current_user).value}
