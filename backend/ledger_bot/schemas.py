from pydantic import BaseModel, Field, field_validator

from .domain.entities import MAX_QUANTITY


class ExtractedExpense(BaseModel):
    """Shape the completion service is asked to return for a free-form message."""

    item: str = Field(min_length=1, max_length=120)
    valor: float = Field(gt=0, allow_inf_nan=False)
    quantidade: int = Field(default=1, ge=1, le=MAX_QUANTITY)

    @field_validator("item", mode="before")
    @classmethod
    def strip_item(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("valor", mode="before")
    @classmethod
    def accept_decimal_comma(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("valor must be a number.")
        if isinstance(value, str):
            return value.strip().replace(",", ".")
        return value

    @field_validator("quantidade", mode="before")
    @classmethod
    def default_quantity(cls, value: object) -> object:
        if value is None or value == "":
            return 1
        if isinstance(value, bool):
            raise ValueError("quantidade must be an integer.")
        return value
