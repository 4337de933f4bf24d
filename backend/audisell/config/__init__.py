"""Application assembly: logging, middleware, rate limiting, routes, startup."""
