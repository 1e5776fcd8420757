from fastapi import APIRouter
from ipcr_portal.routers import attachments, cycles, ipcr

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(cycles.router, tags=["SPMS Cycles"])
# Attachment routes first so /ipcr/attachments/* never reaches /ipcr/{form_id}
api_router.include_router(attachments.router, tags=["IPCR Attachments"])
api_router.include_router(ipcr.router, tags=["IPCR"])
