"""Tests for artwork_service/models.py: request, response and record models."""

import datetime

import pydantic
import pytest

import artwork_service.models


def _record(**overrides) -> artwork_service.models.ArtifactRecord:
    fields = {
        "id": "1700000000000",
        "created_at": datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC),
        "owner_id": "listener-1",
        "payload": {"songs": ["Teardrop"], "image_url": "https://example.test/a.png"},
    }
    fields.update(overrides)
    return artwork_service.models.ArtifactRecord(**fields)


class TestArtworkGenerationRequest:
    def test_valid_prompt(self) -> None:
        request = artwork_service.models.ArtworkGenerationRequest(prompt="Teardrop, Clair de Lune")
        assert request.prompt == "Teardrop, Clair de Lune"
        assert request.access_token is None

    def test_access_token_is_read_from_camel_case_alias(self) -> None:
        request = artwork_service.models.ArtworkGenerationRequest.model_validate(
            {"prompt": "Teardrop", "accessToken": "token-123"},
        )
        assert request.access_token == "token-123"

    @pytest.mark.parametrize("prompt", ["", "   ", ",,,", " , , "])
    def test_prompt_without_any_song_rejected(self, prompt: str) -> None:
        with pytest.raises(pydantic.ValidationError):
            artwork_service.models.ArtworkGenerationRequest(prompt=prompt)

    def test_too_long_prompt_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            artwork_service.models.ArtworkGenerationRequest(
                prompt="x" * (artwork_service.models.MAXIMUM_PROMPT_LENGTH + 1),
            )

    def test_unknown_fields_are_ignored(self) -> None:
        request = artwork_service.models.ArtworkGenerationRequest.model_validate(
            {"prompt": "Teardrop", "theme": "dark"},
        )
        assert request.prompt == "Teardrop"


class TestArtifactRecord:
    def test_records_are_immutable(self) -> None:
        record = _record()
        with pytest.raises(pydantic.ValidationError):
            record.owner_id = "someone-else"

    def test_round_trips_through_json_dump(self) -> None:
        record = _record()
        restored = artwork_service.models.ArtifactRecord.model_validate(record.model_dump(mode="json"))
        assert restored == record

    def test_songs_property_reads_the_payload(self) -> None:
        assert _record().songs == ["Teardrop"]

    def test_songs_property_ignores_malformed_payloads(self) -> None:
        assert _record(payload={"songs": "Teardrop"}).songs == []
        assert _record(payload={"songs": ["A", 3]}).songs == ["A"]
        assert _record(payload={}).songs == []

    def test_empty_identifier_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            _record(id="")


class TestArtworkGenerationResponse:
    def test_artwork_id_is_omitted_when_unset(self) -> None:
        response = artwork_service.models.ArtworkGenerationResponse(
            url="https://example.test/a.png",
            details={"art_style": "Digital art"},
            user_id="anonymous",
        )
        assert "artwork_id" not in response.model_dump(exclude_unset=True)


class TestErrorResponse:
    def test_optional_fields_are_omitted_when_unset(self) -> None:
        response = artwork_service.models.ErrorResponse(
            error=artwork_service.models.ErrorDetail(
                code="not_found",
                message="Not found.",
                correlation_id="abc",
            ),
        )
        assert response.model_dump(exclude_unset=True) == {
            "error": {"code": "not_found", "message": "Not found.", "correlation_id": "abc"},
        }

    def test_negative_retry_hint_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            artwork_service.models.ErrorDetail(
                code="cooldown",
                message="Wait.",
                correlation_id="abc",
                retry_after_milliseconds=-1,
            )
