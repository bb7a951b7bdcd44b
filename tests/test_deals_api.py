from __future__ import annotations


def test_get_deal_detail(client):
    response = client.get("/api/v1/deals/deal-1")
    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["projectKey"] == "AP-1001"
    assert payload["data"]["stage"] == "In Review"
    assert payload["data"]["allowedStages"] == ["Quote Submitted", "No Tender"]
    assert payload["meta"]["currency"] == "GBP"


def test_get_missing_deal_returns_not_found(client):
    response = client.get("/api/v1/deals/nope")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_transition_with_gate_answers(client, api_repository):
    response = client.post(
        "/api/v1/deals/deal-1/transitions",
        json={
            "targetStage": "quote submitted",
            "answers": {
                "quote_reference": "Q-77",
                "quote_date": "2025-06-12",
                "quote_submission_link": "https://files.example.com/q-77.pdf",
                "quote_drawings_link": "https://files.example.com/q-77",
                "tender_value": 5000,
                "tender_cost": "4000",
                "tender_margin": "1000",
                "tender_margin_percent": "20",
                "key_material_rates": "yes",
                "overall_duration": "8 weeks",
                "phases_priced": "All",
            },
        },
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["deal"]["stage"] == "Quote Submitted"
    assert payload["data"]["action"]["actionType"] == "Stage gate: Quote Submitted (v1)"
    assert api_repository.deals["deal-1"].stage.value == "Quote Submitted"

    actions = client.get("/api/v1/deals/deal-1/actions").json()["data"]
    assert [action["actionType"] for action in actions] == ["Stage gate: Quote Submitted (v1)"]


def test_transition_gate_errors_list_missing_fields(client):
    response = client.post(
        "/api/v1/deals/deal-1/transitions",
        json={"targetStage": "Quote Submitted", "answers": {"quote_reference": "Q-1"}},
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "gate_validation_error"
    assert "tender_value" in error["details"]["missing"]


def test_illegal_transition_returns_conflict(client):
    response = client.post("/api/v1/deals/deal-3/transitions", json={"targetStage": "Qualified"})
    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "illegal_transition"
    assert error["details"] == {"fromStage": "No Tender", "toStage": "Qualified"}


def test_unknown_target_stage_is_a_validation_error(client):
    response = client.post("/api/v1/deals/deal-1/transitions", json={"targetStage": "Pending"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_persistence_failure_is_retryable(client, api_repository):
    api_repository.fail_writes = True
    response = client.post("/api/v1/deals/deal-2/transitions", json={"targetStage": "Won"})
    assert response.status_code == 503
    error = response.json()["error"]
    assert error["code"] == "persistence_error"
    assert error["details"] == {"retryable": True}
    assert api_repository.deals["deal-2"].stage.value == "Quote Submitted"


def test_save_tender_summary(client):
    response = client.put(
        "/api/v1/deals/deal-1/tender-summary",
        json={"tenderValue": "£10,000", "tenderCost": 7500},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert float(data["tenderMargin"]) == 2500
    assert float(data["tenderMarginPercent"]) == 25


def test_patch_deal_rejects_unknown_fields(client):
    response = client.patch("/api/v1/deals/deal-1", json={"stage": "Won"})
    assert response.status_code == 422


def test_patch_deal_probability(client):
    response = client.patch("/api/v1/deals/deal-1", json={"probability": "D"})
    assert response.status_code == 200
    assert response.json()["data"]["probability"] == "D"


def test_patch_closed_deal_probability_is_rejected(client):
    response = client.patch("/api/v1/deals/deal-3", json={"probability": "A"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "bad_request"
