"""Route class for endpoints whose malformed bodies answer 400 rather than FastAPI's 422."""

from collections.abc import Callable

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute

from gitanalyzer.core.exceptions import InvalidPayloadError


def describe_validation_errors(errors: list[dict]) -> str:
    fields = [".".join(str(part) for part in err.get("loc", ())[1:]) or "body" for err in errors]
    if all(err.get("type") == "missing" for err in errors):
        return f"Missing required fields: {', '.join(fields)}"
    return f"Invalid fields: {', '.join(fields)}"


class BadRequestRoute(APIRoute):
    """Re-raise request validation failures as ``InvalidPayloadError`` (400)."""

    def get_route_handler(self) -> Callable:
        handler = super().get_route_handler()

        async def bad_request_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except RequestValidationError as exc:
                raise InvalidPayloadError(describe_validation_errors(exc.errors())) from exc

        return bad_request_handler
