from fastapi import FastAPI

from fleet_engine.api.errors import register_error_handlers
from fleet_engine.api.routes.agent import router as agent_router
from fleet_engine.api.routes.nodes import router as nodes_router


def create_app() -> FastAPI:
    app = FastAPI(title="Fleet Engine API")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(agent_router)
    app.include_router(nodes_router)
    register_error_handlers(app)
    return app


app = create_app()
