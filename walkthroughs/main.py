from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from walkthroughs.api import walkthroughs
from walkthroughs.api.utils import register_exception_handlers
from walkthroughs.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="Walkthrough Provisioner",
    description="Provisions per-user walkthrough environments and tracks their services",
    version="0.1.0",
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    """Redirect root URL to Swagger UI docs."""
    return RedirectResponse(url="/docs")


app.include_router(walkthroughs.router)

register_exception_handlers(app)

if __name__ == "__main__":
    uvicorn.run("walkthroughs.main:app", host="0.0.0.0", port=8001, log_level="info")
