from unittest.mock import MagicMock

import pytest
import requests
from openai import OpenAIError

from core.errors import ServiceError, Stage
from models.extraction import ExtractionResult
from services.ai_service import (
    OpenAIFieldExtractor,
    PromptApiFieldExtractor,
    normalize_extraction,
    parse_raw_extraction,
)


def test_maps_alternate_key_spellings():
    raw = {
        "FullName": "Juan Dela Cruz",
        "DOB": "03/04/1990",
        "visit_date": "10/01/2024",
        "phoneNumber": "0917 123 4567",
        "contact_email": "juan@example.com",
        "blood_group": "O+",
        "Sex": "Male",
        "hospital": "Cebu City",
        "s1": "Fever",
        "symptom_2": "Cough",
        "notes": "Three days of fever.",
    }
    result = parse_raw_extraction(raw)
    assert result.name == "Juan Dela Cruz"
    assert result.dateofbirth == "03/04/1990"
    assert result.visited == "10/01/2024"
    assert result.phone == "0917 123 4567"
    assert result.email == "juan@example.com"
    assert result.bloodtype == "O+"
    assert result.gender == "Male"
    assert result.place == "Cebu City"
    assert result.symptom1 == "Fever"
    assert result.symptom2 == "Cough"
    assert result.symptom3 is None
    assert result.summary == "Three days of fever."


def test_canonical_key_wins_over_alias():
    result = parse_raw_extraction({"name": "Ana Reyes", "fullname": "Someone Else"})
    assert result.name == "Ana Reyes"


def test_unwraps_output_holding_a_json_string():
    result = parse_raw_extraction({"output": '{"name": "Ana Reyes", "dob": "1/2/2001"}'})
    assert result.name == "Ana Reyes"
    assert result.dateofbirth == "1/2/2001"


def test_unwraps_result_key():
    assert parse_raw_extraction({"result": {"name": "Ana"}}).name == "Ana"


def test_finds_json_embedded_in_prose():
    raw = 'Sure! Here is the data:\n```json\n{"name": "Pedro Santos", "symptom1": "Headache"}\n```'
    result = parse_raw_extraction(raw)
    assert result.name == "Pedro Santos"
    assert result.symptom1 == "Headache"


@pytest.mark.parametrize("raw", [None, "", "no json here", "{broken", 42, ["a", "b"]])
def test_unreadable_payload_gives_empty_result(raw):
    assert parse_raw_extraction(raw).is_empty()


def test_blank_and_null_values_become_none():
    result = parse_raw_extraction({"name": "  ", "email": "null", "place": "N/A", "gender": None})
    assert result.is_empty()


def test_normalize_extraction_canonicalizes_dates_only():
    result = normalize_extraction(ExtractionResult(name="Juan", dateofbirth="3/4/1990", visited="2024-10-01"))
    assert result.dateofbirth == "03-04-1990"
    assert result.visited == "10-01-2024"
    assert result.name == "Juan"


def test_with_changes_rejects_unknown_fields():
    with pytest.raises(ValueError):
        ExtractionResult().with_changes(password="secret")


def test_with_changes_strips_blank_strings():
    updated = ExtractionResult(name="Juan").with_changes(name="  ", place=" Cebu ")
    assert updated.name is None
    assert updated.place == "Cebu"


# -----------------------------
# Providers
# -----------------------------
def test_openai_extractor_returns_message_content():
    client = MagicMock()
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content='{"name": "Juan"}'))]
    client.chat.completions.create.return_value = completion

    extractor = OpenAIFieldExtractor(api_key=None, model="gpt-4o-mini", client=client)
    raw = extractor.extract_fields("Name: Juan")

    assert parse_raw_extraction(raw).name == "Juan"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][1]["content"] == "Name: Juan"


def test_openai_extractor_wraps_provider_errors():
    client = MagicMock()
    client.chat.completions.create.side_effect = OpenAIError("quota exceeded")

    with pytest.raises(ServiceError) as exc:
        OpenAIFieldExtractor(api_key="k", client=client).extract_fields("text")
    assert exc.value.stage is Stage.EXTRACTION


def test_prompt_api_extractor_posts_prompt_and_key():
    session = MagicMock()
    session.post.return_value.json.return_value = {"output": {"name": "Juan"}}

    extractor = PromptApiFieldExtractor("https://prompt.test/api", api_key="secret", session=session)
    raw = extractor.extract_fields("Name: Juan")

    assert parse_raw_extraction(raw).name == "Juan"
    args, kwargs = session.post.call_args
    assert args[0] == "https://prompt.test/api"
    assert kwargs["headers"]["x-api-key"] == "secret"
    assert kwargs["json"]["content"] == "Name: Juan"
    assert "name" in kwargs["json"]["expected_output"]


def test_prompt_api_extractor_wraps_transport_errors():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("down")

    with pytest.raises(ServiceError) as exc:
        PromptApiFieldExtractor("https://prompt.test/api", session=session).extract_fields("x")
    assert exc.value.stage is Stage.EXTRACTION


def test_prompt_api_extractor_passes_prose_answers_to_the_parser():
    resp = requests.Response()
    resp.status_code = 200
    resp._content = b'Sure! {"name": "Juan"}'
    resp.encoding = "utf-8"
    session = MagicMock()
    session.post.return_value = resp

    raw = PromptApiFieldExtractor("https://prompt.test/api", session=session).extract_fields("x")

    assert raw == 'Sure! {"name": "Juan"}'
    assert parse_raw_extraction(raw).name == "Juan"
