import pytest

import ecoanalytics.processors.predictors as predictors
from ecoanalytics.processors.data_processor import (
    parse_csv,
    build_input,
    iter_results,
    process_rows,
    process_packaging_data,
    process_carbon_data,
    process_product_data,
    process_esg_data,
)

PACKAGING_CSV = """Material_Type,Product_Weight_g,Fragility,Recyclable,Transport_Mode,LCA_Emission_kgCO2
Plastic,120,High,Yes,Land,1.2
Glass,800,Low,No,Air,3.4
"Metal",250.5,Medium,Yes,Sea,2
"""


# ---------------------------------------------------------------------------
# parse_csv
# ---------------------------------------------------------------------------
def test_parse_single_row():
    rows = parse_csv("a,b\n1,2")
    assert rows == [{"a": 1, "b": 2}]


def test_parse_drops_rows_with_wrong_field_count():
    assert parse_csv("a,b\n1,2,3") == []
    rows = parse_csv("a,b\n1,2\n3\n4,5")
    assert rows == [{"a": 1, "b": 2}, {"a": 4, "b": 5}]


def test_parse_requires_header_and_data_line():
    with pytest.raises(ValueError):
        parse_csv("a,b")
    with pytest.raises(ValueError):
        parse_csv("   \n  ")


def test_parse_coerces_numbers_and_strips_quotes():
    rows = parse_csv(PACKAGING_CSV)
    assert len(rows) == 3
    assert rows[0]["Product_Weight_g"] == 120
    assert isinstance(rows[0]["Product_Weight_g"], int)
    assert rows[0]["LCA_Emission_kgCO2"] == pytest.approx(1.2)
    assert rows[2]["Material_Type"] == "Metal"
    assert rows[2]["Product_Weight_g"] == pytest.approx(250.5)
    assert rows[1]["Fragility"] == "Low"


def test_parse_keeps_empty_and_text_values_as_strings():
    rows = parse_csv('name,score,note\r\n"Widget",,n/a\r\n')
    assert rows == [{"name": "Widget", "score": "", "note": "n/a"}]


def test_parse_header_quotes_and_spaces():
    rows = parse_csv('"Product Name", "Environmental Score"\nBrush, 72')
    assert rows == [{"Product Name": "Brush", "Environmental Score": 72}]


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------
def test_build_input_uses_primary_and_secondary_aliases():
    data = build_input("packaging", {"material_type": "Metal", "Product_Weight_g": 90, "emissions": 0.5})
    assert data.material_type == "Metal"
    assert data.product_weight == 90
    assert data.lca_emission == 0.5
    # untouched fields fall back to defaults
    assert data.fragility == "Medium"
    assert data.recyclable == "Yes"
    assert data.transport_mode == "Land"


def test_build_input_defaults_for_empty_row():
    data = build_input("carbon", {})
    assert data.model_dump() == {
        "total_purchases": 10,
        "avg_distance": 300,
        "preferred_packaging": "Cardboard",
        "returns_percent": 2,
        "electricity": 250,
        "travel": 800,
        "service_usage": 20,
    }


def test_build_input_unparseable_number_falls_back_to_default():
    data = build_input("product", {"price": "cheap", "rating": "", "Reviews": 300})
    assert data.price == 50
    assert data.rating == 3.5
    assert data.reviews_count == 300


def test_build_input_zero_is_a_value_not_missing():
    data = build_input("carbon", {"Electricity_kWh": 0})
    assert data.electricity == 0


def test_build_input_stringifies_text_fields():
    data = build_input("esg", {"Product Name": 1234, "Sentiment": "Positive", "environmental_score": "81"})
    assert data.product_name == "1234"
    assert data.sentiment == "Positive"
    assert data.environmental_score == 81
    assert data.sentence == "No description"


def test_build_input_unknown_model_type():
    with pytest.raises(ValueError):
        build_input("weather", {})


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------
def test_process_packaging_rows():
    results = process_packaging_data(parse_csv(PACKAGING_CSV))
    assert len(results) == 3
    for r in results:
        assert r["status"] == "success"
        assert 60 <= r["prediction"]["sustainabilityScore"] <= 100
    # typed input is reported in camelCase
    assert results[0]["input"]["materialType"] == "Plastic"
    assert results[0]["input"]["productWeight"] == 120


def test_process_each_model_type():
    assert process_carbon_data([{"purchases": 5}])[0]["status"] == "success"
    product = process_product_data([{"Carbon_Footprint_MT": 10, "rating": 4.8}])[0]
    assert product["status"] == "success"
    assert product["prediction"]["factors"]["lowCarbonFootprint"] == 25
    esg = process_esg_data([{"Environmental Score": 100, "Sentiment": "Positive"}])[0]
    assert esg["status"] == "success"
    assert esg["prediction"]["category"] in ("Eco-friendly", "Non Eco-friendly")


def test_invalid_row_is_captured_and_batch_continues():
    rows = [{"electricity": 100}, {"electricity": -5}, {"electricity": 50}]
    results = process_carbon_data(rows)
    assert [r["status"] for r in results] == ["success", "error", "success"]
    assert results[1]["input"] == {"electricity": -5}
    assert results[1]["error"]


def test_predictor_exception_is_captured(monkeypatch):
    calls = {"n": 0}
    original = predictors.predict_esg_score

    def flaky(data, rng=None):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("model exploded")
        return original(data, rng)

    monkeypatch.setattr(predictors, "predict_esg_score", flaky)
    results = process_esg_data([{}, {"sentiment": "Negative"}, {}])
    assert [r["status"] for r in results] == ["success", "error", "success"]
    assert results[1] == {"input": {"sentiment": "Negative"}, "error": "model exploded", "status": "error"}


def test_iter_results_is_lazy_and_validates_model_type_eagerly():
    with pytest.raises(ValueError):
        iter_results("weather", [{}])
    gen = iter_results("product", [{}, {}])
    assert next(gen)["status"] == "success"
    assert len(process_rows("product", [{}, {}, {}])) == 3


def test_parse_coerces_per_column_with_mixed_cells():
    text = "id,value\n1,10\n2,2.5\n3,abc\n4,\n5,inf\n6,-7"
    rows = parse_csv(text)
    assert [r["value"] for r in rows] == [10, 2.5, "abc", "", "inf", -7]
    assert isinstance(rows[0]["value"], int)
    assert isinstance(rows[1]["value"], float)
    assert [r["id"] for r in rows] == [1, 2, 3, 4, 5, 6]


def test_parse_large_file_keeps_every_row():
    lines = ["Material_Type,Product_Weight_g,LCA_Emission_kgCO2"]
    lines += [f"Plastic,{i},{i / 10}" for i in range(5000)]
    rows = parse_csv("\n".join(lines))
    assert len(rows) == 5000
    assert rows[4999] == {"Material_Type": "Plastic", "Product_Weight_g": 4999,
                          "LCA_Emission_kgCO2": pytest.approx(499.9)}


def test_non_finite_and_oversized_cells_never_reach_the_model():
    data = build_input("esg", {"Environmental Score": "inf"})
    assert data.environmental_score == 50
    results = process_carbon_data([{"Total_Purchases": 1e200, "Avg_Distance_km": 1e200}])
    assert results[0]["status"] == "error"
