from workers.utils import text_utils
from workers.utils.text_utils import clean_llm_output, extract_first_json_object

def test_clean_strips_think_tags_and_fences():
    raw = '<think>reasoning</think>```json\n{"a": 1}\n```'
    assert clean_llm_output(raw) == '{"a": 1}'

def test_extract_ignores_surrounding_prose():
    assert extract_first_json_object('Sure! {"preferences": {"a": "b"}} Anything else?') == {"preferences": {"a": "b"}}

def test_extract_returns_none_without_an_object():
    assert extract_first_json_object("nothing here") is None
    assert extract_first_json_object("[1, 2, 3]") is None

def test_valid_json_does_not_need_repair(mocker):
    mock_repair = mocker.patch.object(text_utils.JsonExtractor, "extract_valid_json")

    assert extract_first_json_object('{"a": 1}') == {"a": 1}
    mock_repair.assert_not_called()

def test_trailing_comma_is_handed_to_the_repairer(mocker):
    mock_repair = mocker.patch.object(text_utils.JsonExtractor, "extract_valid_json", return_value={"preferences": {"tone": "casual"}})

    parsed = extract_first_json_object('Here you go: {"preferences": {"tone": "casual"},}')

    assert parsed == {"preferences": {"tone": "casual"}}
    mock_repair.assert_called_once_with('{"preferences": {"tone": "casual"},}')

def test_unrepairable_json_returns_none(mocker):
    mocker.patch.object(text_utils.JsonExtractor, "extract_valid_json", side_effect=ValueError("no JSON found"))

    assert extract_first_json_object("{'preferences': oops,}") is None

def test_repair_that_yields_a_list_is_rejected(mocker):
    mocker.patch.object(text_utils.JsonExtractor, "extract_valid_json", return_value=[{"a": 1}])

    assert extract_first_json_object("{a: 1,}") is None
