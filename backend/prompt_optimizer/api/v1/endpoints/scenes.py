from fastapi import APIRouter

from ....schemas import ok
from ....services.scene_detector import get_all_scenes, get_scene_categories

router = APIRouter()


@router.get("/api/v1/scenes")
async def list_scenes():
    return ok({"scenes": get_all_scenes(), "categories": get_scene_categories()})
