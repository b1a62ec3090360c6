"""OperationResult → HTTP response mapping."""

from fastapi import status
from fastapi.responses import JSONResponse

from crewpay.api.schemas import OperationResponse
from crewpay.errors import NotFoundError, PayrollError, ValidationError
from crewpay.operations import OperationResult


def _status_for_class(cls: type[PayrollError]) -> int:
    if issubclass(cls, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if issubclass(cls, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_409_CONFLICT


def _collect(cls: type[PayrollError], mapping: dict[str, int]) -> dict[str, int]:
    for sub in cls.__subclasses__():
        mapping[sub.code] = _status_for_class(sub)
        _collect(sub, mapping)
    return mapping


HTTP_STATUS_BY_CODE = _collect(PayrollError, {})


def http_status_for(error_code: str | None) -> int:
    return HTTP_STATUS_BY_CODE.get(error_code or "", status.HTTP_409_CONFLICT)


def envelope(result: OperationResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    body = OperationResponse(
        success=result.success,
        data=result.data,
        error=result.error,
        error_code=result.error_code,
        details=result.details,
    )
    code = success_status if result.success else http_status_for(result.error_code)
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))
