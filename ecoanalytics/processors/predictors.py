# ecoanalytics/processors/predictors.py
"""
Heuristic sustainability predictors.

Functions:
- predict_packaging(PackagingInput) -> dict
- predict_carbon_footprint(CarbonFootprintInput) -> dict
- predict_product_recommendation(ProductInput) -> dict
- predict_esg_score(ESGInput) -> dict
- predict(model_type, input) -> dict   (dispatch by model type)
- confidence_for(model_type, prediction) -> float

The packaging and ESG scores include a uniform random term, so identical
inputs can produce different outputs. Pass a seeded numpy Generator as `rng`
(or set PREDICTION_SEED) when reproducible output is needed.
"""

import math
import os
from typing import Any, Dict, List, Optional

import numpy as np

from ecoanalytics.schemas import (
    PackagingInput,
    CarbonFootprintInput,
    ProductInput,
    ESGInput,
)

PACKAGING_OPTIONS = [
    "Biodegradable Bubble Wrap",
    "Recycled Cardboard",
    "Compostable Packaging",
    "Reusable Container",
    "Minimal Packaging",
]

# Label encoding used by the carbon model's preprocessing
PACKAGING_ENCODING = {"Cardboard": 0, "Plastic": 1, "Biodegradable": 2}

# kg CO2 per purchase, keyed by encoded preferred_packaging
PACKAGING_EMISSION_FACTORS = {0: 1.2, 1: 2.1, 2: 0.5}

SENTIMENT_MULTIPLIERS = {"Positive": 1.2, "Negative": 0.8}

CARBON_CONFIDENCE = 0.85

_seed = os.getenv("PREDICTION_SEED")
_rng = np.random.default_rng(int(_seed) if _seed else None)


def _round(x: float) -> int:
    """Round half up (0.5 -> 1), unlike Python's round-half-even."""
    return int(math.floor(x + 0.5))


def _clamp(x: float, low: float, high: float) -> float:
    return float(np.clip(x, low, high))


# ---------------------------------------------------------------------------
# Packaging
# ---------------------------------------------------------------------------
def _packaging_recommendation(packaging_type: str, fragility: str) -> str:
    if fragility == "High":
        return (
            f"This {packaging_type.lower()} provides excellent protection while minimizing "
            "environmental impact. Consider using reinforced corners for fragile items."
        )
    return (
        f"This {packaging_type.lower()} option provides good protection while maintaining "
        "sustainability standards. Ideal for standard shipping requirements."
    )


def predict_packaging(data: PackagingInput, rng: Optional[np.random.Generator] = None) -> Dict[str, Any]:
    rng = rng or _rng

    score = 0.0
    if data.recyclable == "Yes":
        score += 20
    if data.fragility == "High":
        score += 15
    if data.product_weight < 200:
        score += 10
    if data.lca_emission < 2.0:
        score += 25
    if data.transport_mode == "Land":
        score += 10

    sustainability = _clamp(score + rng.uniform(0, 20), 60, 100)

    if sustainability > 80:
        cost_efficiency = "High"
    elif sustainability > 60:
        cost_efficiency = "Medium"
    else:
        cost_efficiency = "Low"

    if sustainability > 75:
        carbon_impact = "Low"
    elif sustainability > 50:
        carbon_impact = "Medium"
    else:
        carbon_impact = "High"

    index = int(math.floor(sustainability / 100 * len(PACKAGING_OPTIONS)))
    packaging_type = PACKAGING_OPTIONS[min(index, len(PACKAGING_OPTIONS) - 1)]

    return {
        "packagingType": packaging_type,
        "sustainabilityScore": _round(sustainability),
        "costEfficiency": cost_efficiency,
        "carbonImpact": carbon_impact,
        "recommendation": _packaging_recommendation(packaging_type, data.fragility),
    }


# ---------------------------------------------------------------------------
# Carbon footprint
# ---------------------------------------------------------------------------
def _carbon_suggestions(breakdown: Dict[str, int]) -> List[str]:
    suggestions = []
    if breakdown["transportation"] > 30:
        suggestions.append("• Optimize delivery routes (-20%)")
    if breakdown["packaging"] > 20:
        suggestions.append("• Switch to biodegradable packaging (-15%)")
    if breakdown["electricity"] > 25:
        suggestions.append("• Use renewable energy (-25%)")
    if not suggestions:
        suggestions.append("• Consider consolidating shipments (-10%)")
    return suggestions


def predict_carbon_footprint(data: CarbonFootprintInput) -> Dict[str, Any]:
    encoded_packaging = PACKAGING_ENCODING.get(data.preferred_packaging, 0)

    transportation = data.avg_distance * 0.21 * data.total_purchases
    packaging = data.total_purchases * PACKAGING_EMISSION_FACTORS[encoded_packaging]
    electricity = data.electricity * 0.4
    travel = data.travel * 0.15
    returns = (data.returns_percent / 100) * transportation * 2
    service = data.service_usage * 0.8

    total = transportation + packaging + electricity + travel + returns + service

    def pct(part: float) -> int:
        return _round(part / total * 100) if total > 0 else 0

    breakdown = {
        "transportation": pct(transportation),
        "packaging": pct(packaging),
        "electricity": pct(electricity),
        "other": pct(travel + returns + service),
    }

    return {
        "totalEmissions": _round(total),
        "breakdown": breakdown,
        "suggestions": _carbon_suggestions(breakdown),
    }


# ---------------------------------------------------------------------------
# Product recommendation
# ---------------------------------------------------------------------------
def _product_recommendation(score: int) -> str:
    if score >= 80:
        return "Highly recommended sustainable product with excellent environmental credentials."
    if score >= 60:
        return "Good sustainable choice with room for improvement in some areas."
    return "Consider alternative products with better sustainability ratings."


def predict_product_recommendation(data: ProductInput) -> Dict[str, Any]:
    factors = {
        "lowCarbonFootprint": 25 if data.carbon_footprint < 50 else 0,
        "lowWaterUsage": 20 if data.water_usage < 1000 else 0,
        "lowWaste": 20 if data.waste_production < 10 else 0,
        "goodRating": 15 if data.rating > 4.0 else 0,
        "popularProduct": 10 if data.reviews_count > 100 else 0,
        "affordablePrice": 10 if data.price < data.avg_price else 0,
    }
    total = sum(factors.values())
    likelihood = min(total / 100, 0.95)

    return {
        "purchaseLikelihood": _round(likelihood * 100),
        "sustainabilityScore": total,
        "factors": factors,
        "recommendation": _product_recommendation(total),
    }


# ---------------------------------------------------------------------------
# ESG score
# ---------------------------------------------------------------------------
def _esg_recommendations(score: int, sentiment: str) -> List[str]:
    recommendations = []
    if score < 50:
        recommendations.append("Improve environmental reporting and transparency")
        recommendations.append("Implement sustainable sourcing practices")
    if sentiment == "Negative":
        recommendations.append("Address public perception through improved communication")
        recommendations.append("Invest in community engagement programs")
    if score < 70:
        recommendations.append("Set measurable sustainability targets")
        recommendations.append("Increase renewable energy usage")
    return recommendations


def predict_esg_score(data: ESGInput, rng: Optional[np.random.Generator] = None) -> Dict[str, Any]:
    rng = rng or _rng

    multiplier = SENTIMENT_MULTIPLIERS.get(data.sentiment, 1.0)
    base = data.environmental_score * multiplier
    # category is decided on the reported (rounded) score
    esg_score = _round(_clamp(base + rng.uniform(-10, 10), 0, 100))

    return {
        "esgScore": esg_score,
        "category": "Eco-friendly" if esg_score >= 70 else "Non Eco-friendly",
        "sentiment": data.sentiment,
        "environmentalScore": data.environmental_score,
        "recommendations": _esg_recommendations(esg_score, data.sentiment),
    }


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
INPUT_MODELS = {
    "packaging": PackagingInput,
    "carbon": CarbonFootprintInput,
    "product": ProductInput,
    "esg": ESGInput,
}


def predict(model_type: str, data) -> Dict[str, Any]:
    """Run the predictor for model_type. Raises ValueError for unknown types."""
    # resolved at call time so tests can monkeypatch the module functions
    if model_type == "packaging":
        return predict_packaging(data)
    if model_type == "carbon":
        return predict_carbon_footprint(data)
    if model_type == "product":
        return predict_product_recommendation(data)
    if model_type == "esg":
        return predict_esg_score(data)
    raise ValueError(f"Unknown model type: {model_type}")


def confidence_for(model_type: str, prediction: Dict[str, Any]) -> Optional[float]:
    if model_type == "packaging":
        return prediction["sustainabilityScore"] / 100
    if model_type == "carbon":
        return CARBON_CONFIDENCE
    if model_type == "product":
        return prediction["purchaseLikelihood"] / 100
    if model_type == "esg":
        return prediction["esgScore"] / 100
    return None
