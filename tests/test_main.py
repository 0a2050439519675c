import json

import pytest

from conftest import CUSTOMER_ID, RESTAURANT_ID, combo_menu_doc
from main import main


@pytest.fixture
def files(tmp_path):
    def write(name, payload):
        path = tmp_path / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    return write


@pytest.fixture
def quote_args(files):
    menu = files("menu.json", combo_menu_doc())
    customer = files("customer.json", {
        "customer_id": CUSTOMER_ID,
        "display_name": "Alex Rivera",
        "email": "alex@example.edu",
    })

    def build(request):
        return ["quote", menu, files("request.json", request), customer]

    return build


def combo_request(**overrides):
    body = {
        "restaurant_id": RESTAURANT_ID,
        "items": [{
            "item_id": "combo",
            "quantity": 2,
            "extras": [
                {"extra_id": "entree", "extras": [
                    {"extra_id": "cheeseburger", "extras": ["extra-cheese"]},
                ]},
                {"extra_id": "drink", "extras": ["soda"]},
            ],
        }],
    }
    body.update(overrides)
    return body


def test_quote_prints_priced_order(quote_args, capsys):
    assert main(quote_args(combo_request())) == 0

    order = json.loads(capsys.readouterr().out)
    assert order["subtotal_amount"] == "22.98"
    assert order["tax_amount"] == "1.84"
    assert order["total_amount"] == "24.82"
    assert order["customer"]["name"] == "Alex Rivera"
    assert order["status"] == "pending"


def test_quote_reports_order_errors(quote_args, capsys):
    request = combo_request()
    request["items"][0]["extras"] = [{"extra_id": "entree", "extras": ["veggie"]}]

    assert main(quote_args(request)) == 1

    error = json.loads(capsys.readouterr().out)["error"]
    assert error["kind"] == "required_extra_missing"
    assert error["message"] == "Drink is required"
    assert error["category"] == "business_rule"


def test_quote_rejects_malformed_request(quote_args, capsys):
    assert main(quote_args(combo_request(items=[]))) == 2

    error = json.loads(capsys.readouterr().out)["error"]
    assert error == {"kind": "invalid_request", "message": "items array cannot be empty"}


def test_unknown_log_level_is_configuration_error(quote_args, capsys):
    assert main(["--log-level", "chatty", *quote_args(combo_request())]) == 2

    error = json.loads(capsys.readouterr().out)["error"]
    assert error["kind"] == "configuration"
    assert "CHATTY" in error["message"]
