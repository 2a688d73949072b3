import pytest

from ideagen.errors import MalformedResponseError, PlanRequired, UnknownFeatureError
from ideagen.feature_catalog import FEATURE_CATALOG, get_feature, list_features, load_feature_catalog
from ideagen.models import Idea


def test_packaged_catalog_costs():
    assert FEATURE_CATALOG.cost_for("basic-analysis") == 1
    assert FEATURE_CATALOG.cost_for("business-plan") == 12
    assert FEATURE_CATALOG.cost_for("landing-page-generator") == 18
    assert FEATURE_CATALOG.get("pitch-deck").payload_key == "pitchDeck"
    assert FEATURE_CATALOG.get("seo-analyzer").content_type == "seo-analysis"


def test_plan_waiver_and_initial_credits():
    assert FEATURE_CATALOG.cost_for("pdf-export", "business") == 0
    assert FEATURE_CATALOG.cost_for("pdf-export", "free") == 1
    assert FEATURE_CATALOG.initial_credits("free") == 3
    assert FEATURE_CATALOG.initial_credits("entrepreneur") == 50
    assert FEATURE_CATALOG.initial_credits("business") == 200
    assert FEATURE_CATALOG.initial_credits("unknown") == 0


def test_monthly_allowance_per_plan():
    assert FEATURE_CATALOG.monthly_credits("free") == 0
    assert FEATURE_CATALOG.monthly_credits("entrepreneur") == 50
    assert FEATURE_CATALOG.monthly_credits("business") == 200
    assert FEATURE_CATALOG.monthly_credits("unknown") == 0


def test_pdf_export_requires_a_paid_plan():
    export = FEATURE_CATALOG.get("pdf-export")

    assert export.allows("entrepreneur")
    assert export.allows("business")
    assert not export.allows("free")
    assert not export.allows(None)
    export.check_plan("business")
    with pytest.raises(PlanRequired) as exc_info:
        export.check_plan("free")
    assert exc_info.value.feature == "pdf-export"
    assert exc_info.value.plan == "free"

    assert FEATURE_CATALOG.get("market-analysis").allows("free")


def test_first_basic_analysis_costs_nothing():
    assert FEATURE_CATALOG.cost_for("basic-analysis", "free", first_use=True) == 0
    assert FEATURE_CATALOG.cost_for("basic-analysis", "free") == 1
    # the first-use waiver is specific to basic-analysis
    assert FEATURE_CATALOG.cost_for("market-analysis", "free", first_use=True) == 4


def test_unknown_feature():
    with pytest.raises(UnknownFeatureError) as exc_info:
        FEATURE_CATALOG.get("time-machine")
    assert exc_info.value.feature == "time-machine"
    assert str(exc_info.value) == "Unknown feature: time-machine"


def test_list_is_sorted_and_plan_aware():
    names = [f.name for f in FEATURE_CATALOG.list()]
    assert names == sorted(names)

    listed = {f["name"]: f for f in (d.to_dict("business") for d in FEATURE_CATALOG.list())}
    assert listed["pdf-export"]["cost"] == 0
    assert listed["pdf-export"]["available"] is True
    assert listed["pdf-export"]["required_plans"] == ["entrepreneur", "business"]
    assert listed["market-analysis"]["cost"] == 4
    assert listed["market-analysis"]["required_plans"] == []

    free = {d.name: d.to_dict("free") for d in FEATURE_CATALOG.list()}
    assert free["pdf-export"]["available"] is False


def test_build_payload_merges_params():
    descriptor = FEATURE_CATALOG.get("pricing-model")
    idea = Idea(title="Pet-sitting app", description="Sitters on demand", id="i1")

    payload = descriptor.build_payload(idea, {"currency": "EUR"})

    assert payload == {"currency": "EUR", "idea": {"title": "Pet-sitting app", "description": "Sitters on demand", "id": "i1"}}


@pytest.mark.parametrize("data", [None, [], "text", {}, {"analysis": {}}, {"analysis": ""}, {"other": 1}])
def test_validate_response_rejects_bad_shapes(data):
    with pytest.raises(MalformedResponseError):
        FEATURE_CATALOG.get("market-analysis").validate_response(data)


def test_validate_response_returns_payload():
    payload = FEATURE_CATALOG.get("market-analysis").validate_response({"analysis": {"tam": "1B"}})
    assert payload == {"tam": "1B"}


def test_load_catalog_from_file(tmp_path):
    path = tmp_path / "costs.jsonc"
    path.write_text(
        """{
            // comments are allowed
            "PLAN_CREDITS": {"free": {"initial": 5}},
            "FEATURES": {
                "quick-check": {"cost": 0, "payload_key": "check"},
                "deep-check": {"cost": 3, "payload_key": "check", "required_plans": ["pro"], "free_first_use": true}
            }
        }""",
        encoding="utf-8",
    )

    catalog = load_feature_catalog(path)

    descriptor = catalog.get("quick-check")
    assert descriptor.cost == 0
    assert descriptor.display_name == "quick-check"
    assert descriptor.content_type == "quick-check"
    assert descriptor.required_plans == ()
    assert descriptor.free_first_use is False
    assert catalog.initial_credits("free") == 5

    deep = catalog.get("deep-check")
    assert deep.required_plans == ("pro",)
    assert deep.free_first_use is True


@pytest.mark.parametrize(
    "body",
    [
        '{"FEATURES": {}}',
        '{"PLAN_CREDITS": {}, "FEATURES": {"x": {"cost": -1, "payload_key": "k"}}}',
        '{"PLAN_CREDITS": {}, "FEATURES": {"x": {"cost": 1}}}',
    ],
)
def test_load_catalog_fails_fast(tmp_path, body):
    path = tmp_path / "costs.jsonc"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError):
        load_feature_catalog(path)


def test_missing_catalog_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_feature_catalog(tmp_path / "missing.jsonc")


def test_module_helpers_use_packaged_catalog():
    assert get_feature("cac-ltv").payload_key == "metrics"
    assert [f.name for f in list_features()] == [f.name for f in FEATURE_CATALOG.list()]
    assert len(list_features()) == 26
