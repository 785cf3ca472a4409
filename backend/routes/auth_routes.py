from fastapi import APIRouter, Depends

from backend.auth.dependencies import get_current_actor
from backend.services.authorization import Actor

router = APIRouter()


@router.get("/me")
def me(actor: Actor = Depends(get_current_actor)):
    return {"id": actor.id, "role": actor.role.value}
