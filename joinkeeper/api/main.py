from fastapi import FastAPI
from fastapi.responses import JSONResponse


def create_app(state) -> FastAPI:
    """Health probe endpoints for the operator."""
    app = FastAPI(title="joinkeeper", docs_url=None, redoc_url=None)

    @app.get("/healthz")
    def healthz():
        if not state.healthy():
            return JSONResponse(status_code=500, content={"status": "unhealthy"})
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        if not state.ready():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return {"status": "ok"}

    return app


def create_server(state, host: str = "0.0.0.0", port: int = 8081):
    """Build a uvicorn server for the probe endpoints, run beside the operator."""
    import uvicorn

    config = uvicorn.Config(create_app(state), host=host, port=port, log_level="warning")
    return uvicorn.Server(config)
