from fastapi import FastAPI, Request
from starlette.responses import Response


ROBOTS_HEADER = "noindex, nofollow, noarchive"
SECURITY_HEADERS = {
    "X-Robots-Tag": ROBOTS_HEADER,
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "same-origin",
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        # Pages carry per-user data.
        if request.url.path.startswith(("/api/", "/admin/")):
            response.headers["Cache-Control"] = "no-store"
        return response
