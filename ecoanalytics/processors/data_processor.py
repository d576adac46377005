# ecoanalytics/processors/data_processor.py
"""
CSV parsing and row-by-row batch prediction.

Functions:
- parse_csv(text) -> list[dict]
- build_input(model_type, row) -> pydantic input model
- iter_results(model_type, rows) -> iterator of per-row result dicts
- process_rows(model_type, rows) -> list of per-row result dicts
- process_packaging_data / process_carbon_data / process_product_data / process_esg_data

Per-row result shape:
- {"input": {...typed input...}, "prediction": {...}, "status": "success"}
- {"input": {...raw row...}, "error": "<message>", "status": "error"}

A failing row never aborts the rest of the batch.
"""

import math
from typing import Any, Dict, Iterator, List, Tuple

import pandas as pd

# Import the module (not bare functions) so monkeypatching in tests works
import ecoanalytics.processors.predictors as _predictors

Row = Dict[str, Any]

_INT_PATTERN = r"[+-]?\d+"

# model_type -> [(field, header aliases, default)]; the default's type decides
# whether the field is read as text or as a number
FIELD_MAP: Dict[str, List[Tuple[str, Tuple[str, ...], Any]]] = {
    "packaging": [
        ("material_type", ("Material_Type", "material_type"), "Glass"),
        ("product_weight", ("Product_Weight_g", "weight"), 150),
        ("fragility", ("Fragility", "fragility"), "Medium"),
        ("recyclable", ("Recyclable", "recyclable"), "Yes"),
        ("transport_mode", ("Transport_Mode", "transport_mode"), "Land"),
        ("lca_emission", ("LCA_Emission_kgCO2", "emissions"), 1.5),
    ],
    "carbon": [
        ("total_purchases", ("Total_Purchases", "purchases"), 10),
        ("avg_distance", ("Avg_Distance_km", "distance"), 300),
        ("preferred_packaging", ("Preferred_Packaging", "packaging"), "Cardboard"),
        ("returns_percent", ("Returns_%", "returns"), 2),
        ("electricity", ("Electricity_kWh", "electricity"), 250),
        ("travel", ("Travel_km", "travel"), 800),
        ("service_usage", ("Service_Usage_hr", "service"), 20),
    ],
    "product": [
        ("category", ("category", "Category"), "Unknown"),
        ("material", ("material", "Material"), "Unknown"),
        ("brand", ("brand", "Brand"), "Unknown"),
        ("price", ("price", "Price"), 50),
        ("rating", ("rating", "Rating"), 3.5),
        ("reviews_count", ("reviewsCount", "Reviews"), 50),
        ("carbon_footprint", ("Carbon_Footprint_MT", "carbon"), 30),
        ("water_usage", ("Water_Usage_Liters", "water"), 800),
        ("waste_production", ("Waste_Production_KG", "waste"), 8),
        ("avg_price", ("Average_Price_USD", "avg_price"), 60),
    ],
    "esg": [
        ("product_name", ("Product Name", "product_name"), "Unknown Product"),
        ("sentence", ("Sentence", "sentence"), "No description"),
        ("sentiment", ("Sentiment", "sentiment"), "Neutral"),
        ("environmental_score", ("Environmental Score", "environmental_score"), 50),
    ],
}


# ---------------------------------------------------------------------------
# CSV parsing
# ---------------------------------------------------------------------------
def _to_number(value: Any):
    """Return a finite float for numeric-looking values, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            num = float(value)
        except OverflowError:
            return None
    else:
        num = pd.to_numeric(value, errors="coerce")
        if pd.isna(num):
            return None
        num = float(num)
    return num if math.isfinite(num) else None


def _coerce_column(raw: pd.Series) -> List[Any]:
    """Numbers for numeric-looking cells (int when integral text), text otherwise."""
    numbers = pd.to_numeric(raw, errors="coerce")
    integral = raw.str.fullmatch(_INT_PATTERN)
    out: List[Any] = []
    for text, num, whole in zip(raw.tolist(), numbers.tolist(), integral.tolist()):
        if text == "" or pd.isna(num) or not math.isfinite(num):
            out.append(text)
        elif whole:
            out.append(int(text))
        else:
            out.append(float(num))
    return out


def _split_line(line: str) -> List[str]:
    return [v.strip().replace('"', "") for v in line.split(",")]


def parse_csv(text: str) -> List[Row]:
    """
    Parse CSV text into a list of dicts keyed by the header row.

    Rows whose field count differs from the header are dropped. Quotes are
    stripped, not interpreted: a quoted field containing a comma splits.
    Numeric coercion runs once per column.

    Raises:
      ValueError if there is no header plus at least one data line.
    """
    lines = text.strip().split("\n")
    if len(lines) < 2:
        raise ValueError("CSV must have at least a header and one data row")

    headers = _split_line(lines[0])
    records = [values for values in map(_split_line, lines[1:]) if len(values) == len(headers)]
    if not records:
        return []

    frame = pd.DataFrame(records, dtype=object)
    columns = [_coerce_column(frame[i]) for i in range(len(headers))]
    return [dict(zip(headers, values)) for values in zip(*columns)]


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------
def _first_present(row: Row, aliases: Tuple[str, ...]):
    for key in aliases:
        value = row.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        return value
    return None


def build_input(model_type: str, row: Row):
    """Map a raw row onto the typed input for model_type, filling defaults."""
    if model_type not in FIELD_MAP:
        raise ValueError(f"Unknown model type: {model_type}")

    fields: Dict[str, Any] = {}
    for name, aliases, default in FIELD_MAP[model_type]:
        value = _first_present(row, aliases)
        if isinstance(default, str):
            fields[name] = default if value is None else str(value)
        else:
            num = _to_number(value) if value is not None else None
            fields[name] = float(default) if num is None else num
    return _predictors.INPUT_MODELS[model_type](**fields)


# ---------------------------------------------------------------------------
# Batch processing
# ---------------------------------------------------------------------------
def _process_one(model_type: str, row: Row) -> Dict[str, Any]:
    try:
        data = build_input(model_type, row)
        prediction = _predictors.predict(model_type, data)
        return {
            "input": data.model_dump(by_alias=True),
            "prediction": prediction,
            "status": "success",
        }
    except Exception as e:
        return {"input": row, "error": str(e) or e.__class__.__name__, "status": "error"}


def iter_results(model_type: str, rows: List[Row]) -> Iterator[Dict[str, Any]]:
    """
    Lazily process rows one at a time, in order.

    Raises ValueError immediately (not on first iteration) for an unknown model type.
    """
    if model_type not in FIELD_MAP:
        raise ValueError(f"Unknown model type: {model_type}")
    return (_process_one(model_type, row) for row in rows)


def process_rows(model_type: str, rows: List[Row]) -> List[Dict[str, Any]]:
    return list(iter_results(model_type, rows))


def process_packaging_data(rows: List[Row]) -> List[Dict[str, Any]]:
    return process_rows("packaging", rows)


def process_carbon_data(rows: List[Row]) -> List[Dict[str, Any]]:
    return process_rows("carbon", rows)


def process_product_data(rows: List[Row]) -> List[Dict[str, Any]]:
    return process_rows("product", rows)


def process_esg_data(rows: List[Row]) -> List[Dict[str, Any]]:
    return process_rows("esg", rows)
