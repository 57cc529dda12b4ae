from json_parser import parse_json_from_response


def test_plain_json():
    assert parse_json_from_response('{"schedules": []}') == {"schedules": []}


def test_fenced_block():
    text = 'Here is the plan:\n```json\n{"schedules": [{"task_id": "a"}]}\n```\nGood luck!'
    assert parse_json_from_response(text) == {"schedules": [{"task_id": "a"}]}


def test_embedded_object():
    text = 'Sure! {"schedules": [{"task_id": "a", "score": 0.7}]} Let me know.'
    assert parse_json_from_response(text)["schedules"][0]["score"] == 0.7


def test_smart_quotes_are_normalized():
    assert parse_json_from_response("{“task_id”: “a”}") == {"task_id": "a"}


def test_repairs_trailing_comma():
    result = parse_json_from_response('{"schedules": [{"task_id": "a"},]}')
    assert result == {"schedules": [{"task_id": "a"}]}


def test_non_string_and_empty_input():
    assert parse_json_from_response(None) is None
    assert parse_json_from_response({"already": "parsed"}) is None
    assert parse_json_from_response("   ") is None
