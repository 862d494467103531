from fastapi import APIRouter

from app.api.auth import router as auth_router
from app.api.channels import router as channels_router
from app.api.dm import router as dm_router
from app.api.friends import router as friends_router
from app.api.masks import router as masks_router
from app.api.rooms import router as rooms_router
from app.api.rtc import router as rtc_router
from app.api.servers import router as servers_router
from app.api.uploads import router as uploads_router

router = APIRouter()

router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(masks_router)
router.include_router(rooms_router)
router.include_router(servers_router)
router.include_router(channels_router)
router.include_router(friends_router)
router.include_router(dm_router)
router.include_router(rtc_router)
router.include_router(uploads_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Masq API"}
