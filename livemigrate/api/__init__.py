"""FastAPI operator and health surface."""
