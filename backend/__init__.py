"""Work Permit HTTP backend (FastAPI)."""
