# API Routes Module
from numis_billing.api.routes import (
    sessions,
    webhooks,
)

__all__ = [
    "sessions",
    "webhooks",
]
