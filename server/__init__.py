"""
Control surface

- app.py: FastAPI app over a SessionLoop (health, status, snapshot, pause/resume, export)

Usage examples:
    from server.app import create_app
    app = create_app(loop)
"""
