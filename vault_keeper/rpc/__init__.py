"""Wire layer: schemas, framing, status codes, interceptors and routes."""
