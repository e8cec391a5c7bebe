"""HTTP clients and the HTTP adapter around the execution pipeline."""
