from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from topic_operator.core.exceptions import ProblemDetail


def _problem(status: int, title: str, detail: str) -> JSONResponse:
    body = ProblemDetail(status=status, title=title, detail=detail)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(mode="json"),
        media_type="application/problem+json",
    )


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError):
        return _problem(400, "Bad Request", str(exc))

    @app.exception_handler(KeyError)
    async def key_error_handler(_: Request, exc: KeyError):
        detail = exc.args[0] if exc.args else "not found"
        return _problem(404, "Not Found", str(detail))

    # Catch-all
    @app.exception_handler(Exception)
    async def unhandled(_: Request, exc: Exception):
        return _problem(500, "Internal Server Error", str(exc))
