"""
Task Management API package.

The FastAPI application lives in :mod:`tasks_api.main`; import it from there
(``from tasks_api.main import app``) so that importing the query, stats or
repository modules does not build the app.
"""
