from fastapi.responses import JSONResponse

from ipcr_portal.core.schemas import ApiResponse
from ipcr_portal.services.base import status_code_for


def respond(result: ApiResponse, success_code: int = 200) -> JSONResponse:
    """Render a service result with the HTTP status matching its error code."""
    return JSONResponse(status_code=status_code_for(result, success_code), content=result.to_dict())
