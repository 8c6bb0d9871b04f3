from typing import List
from pydantic import BaseModel, ConfigDict, Field

class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    price: float
    category: str
    in_stock: bool = Field(alias="inStock")


def seed_products() -> List[Product]:
    """Jeu de données initial (exemple)"""
    return [
        Product(
            id="1",
            name="Laptop",
            description="High-performance laptop with 16GB RAM",
            price=1200,
            category="electronics",
            in_stock=True,
        ),
        Product(
            id="2",
            name="Smartphone",
            description="Latest model with 128GB storage",
            price=800,
            category="electronics",
            in_stock=True,
        ),
        Product(
            id="3",
            name="Coffee Maker",
            description="Programmable coffee maker with timer",
            price=50,
            category="kitchen",
            in_stock=False,
        ),
    ]
