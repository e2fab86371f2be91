"""Model pricing data models."""

from .session import CamelModel


class ModelPricing(CamelModel):
    """Per-token prices in USD."""

    input_price: float
    output_price: float
    cache_write_price: float
    cache_read_price: float
