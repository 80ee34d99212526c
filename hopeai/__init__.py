"""HopeAI clinical assistant backend."""
