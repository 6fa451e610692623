"""FastAPI query surface over the local invoice store."""
