"""FastAPI development server for InsureFlow."""
