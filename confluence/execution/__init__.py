"""Order execution gateways."""

from confluence.execution.gateway import (
    ExecutionGateway,
    OrderRequest,
    OrderResult,
    PaperExecutionGateway,
)

__all__ = ["ExecutionGateway", "OrderRequest", "OrderResult", "PaperExecutionGateway"]
