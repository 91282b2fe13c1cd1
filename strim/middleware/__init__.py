"""Application middleware."""

from strim.middleware.correlation import (
    CorrelationIdFilter,
    CorrelationIDMiddleware,
    get_correlation_id,
)

__all__ = ["CorrelationIdFilter", "CorrelationIDMiddleware", "get_correlation_id"]
