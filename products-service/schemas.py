from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

from models import Product

# Messages renvoyés au client, dans l'ordre des champs
FIELD_ERRORS = {
    "name": "name (string) is required",
    "description": "description (string) must be a string",
    "price": "price (number) is required",
    "category": "category (string) is required",
    "inStock": "inStock (boolean) is required",
}
BODY_ERROR = "request body must be a JSON object"


class ProductCreate(BaseModel):
    """Body accepted by create and update (PUT replaces everything but the id)."""

    name: StrictStr
    description: Optional[StrictStr] = ""
    # strict: pas de "12" ni de booléen, mais un int est accepté
    price: float = Field(strict=True, allow_inf_nan=False)
    category: StrictStr
    in_stock: StrictBool = Field(alias="inStock")

    @field_validator("name", "category")
    @classmethod
    def must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("description")
    @classmethod
    def default_description(cls, v):
        return v if v is not None else ""

    def to_product(self, product_id: str) -> Product:
        return Product(id=product_id, **self.model_dump())


class ProductData(BaseModel):
    product: Product


class ProductResponse(BaseModel):
    status: str = "success"
    data: ProductData


class ProductListData(BaseModel):
    products: List[Product]


class ProductListResponse(BaseModel):
    status: str = "success"
    results: int
    page: int
    total: int
    data: ProductListData


class StatsData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count_by_category: Dict[str, int] = Field(alias="countByCategory")
    total: int


class StatsResponse(BaseModel):
    status: str = "success"
    data: StatsData
