# ecoanalytics/schemas.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MODEL_TYPES = ("packaging", "carbon", "product", "esg")

# upper bound for carbon inputs; keeps the emission total finite
CARBON_INPUT_MAX = 1e12


class _CamelModel(BaseModel):
    # JSON payloads use camelCase; python code uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


class PackagingInput(_CamelModel):
    material_type: str
    product_weight: float
    fragility: str
    recyclable: str
    transport_mode: str
    lca_emission: float


class CarbonFootprintInput(_CamelModel):
    total_purchases: float = Field(ge=0, le=CARBON_INPUT_MAX)
    avg_distance: float = Field(ge=0, le=CARBON_INPUT_MAX)
    preferred_packaging: str
    returns_percent: float = Field(ge=0, le=100)
    electricity: float = Field(ge=0, le=CARBON_INPUT_MAX)
    travel: float = Field(ge=0, le=CARBON_INPUT_MAX)
    service_usage: float = Field(ge=0, le=CARBON_INPUT_MAX)


class ProductInput(_CamelModel):
    category: str
    material: str
    brand: str
    price: float
    rating: float
    reviews_count: float
    carbon_footprint: float
    water_usage: float
    waste_production: float
    avg_price: float


class ESGInput(_CamelModel):
    product_name: str
    sentence: str
    sentiment: str
    environmental_score: float
