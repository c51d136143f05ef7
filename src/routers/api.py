from fastapi import APIRouter

from routers import history, load_test, websocket

router = APIRouter()

# include sub-routers
router.include_router(load_test.router)
router.include_router(history.router)
router.include_router(websocket.router)
