from .query_history import QueryHistory  # noqa: F401
