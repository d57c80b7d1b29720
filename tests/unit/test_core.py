"""Unit tests for the core package.

Covers:
- :class:`~homex.core.settings.Settings` loading, validation, and helpers.
- :mod:`~homex.core.ids` generation and validation.
- :class:`~homex.core.models.ListingInput` bounds and
  :class:`~homex.core.models.ListingPage` pagination maths.
- :mod:`~homex.core.validation` error flattening.
- :mod:`~homex.core.logging_config` correlation ids and JSON output.
"""

from __future__ import annotations

import io
import json
import logging
from datetime import UTC, datetime

import pydantic
import pytest

from homex.core.exceptions import InvalidIdError, NotificationFailure, ValidationError
from homex.core.ids import is_valid_listing_id, new_listing_id, normalise_listing_id
from homex.core.logging_config import (
    CORRELATION_ID_CTX,
    CorrelationContextFilter,
    JsonFormatter,
    configure_logging,
)
from homex.core.models import Listing, ListingInput, ListingPage
from homex.core.settings import DEFAULT_ALLOWED_ORIGINS, Settings
from homex.core.validation import validate_listing_input, validate_search_query


def _valid_body(**overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "name": "Cedar cottage",
        "email": "owner@example.com",
        "address": "12 Elm St",
        "price": 450000,
        "keywords": ["garden", "solar"],
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, clean_env: None) -> None:
        s = Settings()
        assert s.environment == "development"
        assert s.port == 5000
        assert s.listing_ttl_days == 60
        assert (s.notice_window_start_days, s.notice_window_end_days) == (7, 8)
        assert s.expiry_sweep_cron == "0 0 * * *"
        assert s.notify_sweep_cron == "0 1 * * *"
        assert s.run_startup_catchup is True
        assert s.allowed_origins == list(DEFAULT_ALLOWED_ORIGINS)

    def test_email_configured_requires_key_and_sender(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SENDGRID_API_KEY", "SG.test")
        assert Settings().email_configured is False
        monkeypatch.setenv("EMAIL_FROM", "noreply@example.com")
        assert Settings().email_configured is True

    def test_homex_env_maps_to_environment(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOMEX_ENV", "Production")
        s = Settings()
        assert s.environment == "production"
        assert s.is_production is True

    def test_unknown_environment_rejected(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOMEX_ENV", "staging")
        with pytest.raises(pydantic.ValidationError):
            Settings()

    def test_allowed_origins_csv(self, clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ALLOWED_ORIGINS", " https://a.example , https://b.example,, ")
        assert Settings().allowed_origins == ["https://a.example", "https://b.example"]

    def test_invalid_cron_rejected(self, clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EXPIRY_SWEEP_CRON", "every day")
        with pytest.raises(pydantic.ValidationError):
            Settings()

    @pytest.mark.parametrize("tz", ["Mars/Olympus", "Not A Zone"])
    def test_unknown_timezone_rejected(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch, tz: str
    ) -> None:
        monkeypatch.setenv("SCHEDULER_TIMEZONE", tz)
        with pytest.raises(pydantic.ValidationError, match="scheduler_timezone"):
            Settings()

    def test_named_timezone_accepted(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SCHEDULER_TIMEZONE", "America/New_York")
        assert Settings().scheduler_timezone == "America/New_York"

    def test_empty_notice_window_rejected(self, clean_env: None) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(notice_window_start_days=8, notice_window_end_days=8)

    def test_notice_window_beyond_ttl_rejected(self, clean_env: None) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(listing_ttl_days=5, notice_window_start_days=7, notice_window_end_days=8)

    def test_log_level_normalised(self, clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert Settings().log_level == "DEBUG"


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


class TestIds:
    def test_new_id_shape(self) -> None:
        lid = new_listing_id()
        assert len(lid) == 24
        assert is_valid_listing_id(lid)
        assert lid == lid.lower()

    def test_new_ids_are_unique(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert len({new_listing_id(now) for _ in range(200)}) == 200

    def test_timestamp_prefix(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert new_listing_id(now)[:8] == f"{int(now.timestamp()):08x}"

    @pytest.mark.parametrize(
        "value",
        ["not-an-id", "", "123", "g" * 24, "0" * 25, None, 12345],
    )
    def test_invalid_ids(self, value: object) -> None:
        assert is_valid_listing_id(value) is False
        with pytest.raises(InvalidIdError):
            normalise_listing_id(value)

    def test_normalise_lowercases(self) -> None:
        assert normalise_listing_id("ABCDEF0123456789ABCDEF01") == "abcdef0123456789abcdef01"

    def test_all_zero_id_is_well_formed(self) -> None:
        assert normalise_listing_id("000000000000000000000000") == "0" * 24


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestListingInput:
    def test_camel_and_snake_case_accepted(self) -> None:
        a = ListingInput.model_validate(_valid_body(lotArea="0.5 acre"))
        b = ListingInput.model_validate(_valid_body(lot_area="0.5 acre"))
        assert a.lot_area == b.lot_area == "0.5 acre"

    def test_document_uses_camel_case_and_drops_none(self) -> None:
        doc = ListingInput.model_validate(
            _valid_body(mlsLink="https://mls.example/1", yearBuilt="1999")
        ).to_document()
        assert doc["mlsLink"] == "https://mls.example/1"
        assert doc["yearBuilt"] == "1999"
        assert "notes" not in doc

    def test_strings_trimmed_and_unknown_keys_dropped(self) -> None:
        data = ListingInput.model_validate(_valid_body(name="  Cedar  ", hacker="x"))
        assert data.name == "Cedar"
        assert "hacker" not in data.to_document()

    def test_tags_trimmed(self) -> None:
        data = ListingInput.model_validate(_valid_body(keywords=["  garden ", "pool"]))
        assert data.keywords == ["garden", "pool"]


class TestListingPage:
    def test_total_pages_rounds_up(self) -> None:
        page = ListingPage(listings=[], page=1, limit=50, total=101)
        assert page.total_pages == 3
        assert page.pagination() == {"page": 1, "limit": 50, "total": 101, "totalPages": 3}

    def test_empty_store_has_zero_pages(self) -> None:
        assert ListingPage(total=0).total_pages == 0


class TestListingPublic:
    def test_to_public_is_camel_case_json(self) -> None:
        listing = Listing(
            id="a" * 24,
            name="Cedar",
            email="o@example.com",
            lot_area="1 acre",
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            expiration_date=datetime(2026, 3, 2, tzinfo=UTC),
        )
        public = listing.to_public()
        assert public["id"] == "a" * 24
        assert public["lotArea"] == "1 acre"
        assert public["createdAt"].startswith("2026-01-01T00:00:00")
        assert "expirationDate" in public


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateListingInput:
    def test_valid_body(self) -> None:
        data = validate_listing_input(_valid_body())
        assert isinstance(data, ListingInput)
        assert data.name == "Cedar cottage"

    def test_missing_required_fields_all_reported(self) -> None:
        with pytest.raises(ValidationError) as info:
            validate_listing_input({})
        fields = {e["field"] for e in info.value.errors}
        assert {"name", "email"} <= fields

    def test_bad_email_message(self) -> None:
        with pytest.raises(ValidationError) as info:
            validate_listing_input(_valid_body(email="not-an-email"))
        [error] = info.value.errors
        assert error["field"] == "email"
        assert "not a valid email address" in error["message"]

    @pytest.mark.parametrize(
        "email",
        ["x@y..", "owner@-bad-.com", "o@example.com.", "owner@.com..", "a b@example.com"],
    )
    def test_malformed_emails_rejected(self, email: str) -> None:
        with pytest.raises(ValidationError) as info:
            validate_listing_input({"name": "Cedar", "email": email})
        assert [e["field"] for e in info.value.errors] == ["email"]

    def test_email_domain_normalised(self) -> None:
        assert validate_listing_input(_valid_body(email="owner@EXAMPLE.com")).email == (
            "owner@example.com"
        )

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"name": "x" * 201}, "name"),
            ({"name": "   "}, "name"),
            ({"price": -1}, "price"),
            ({"price": 100_000_001}, "price"),
            ({"keywords": [f"k{i}" for i in range(21)]}, "keywords"),
            ({"keywords": ["x" * 101]}, "keywords"),
            ({"bedrooms": 51}, "bedrooms"),
            ({"mlsLink": "not a url"}, "mlsLink"),
        ],
    )
    def test_bounds(self, overrides: dict[str, object], field: str) -> None:
        with pytest.raises(ValidationError) as info:
            validate_listing_input(_valid_body(**overrides))
        assert any(e["field"].split(".")[0] in (field, _snake(field)) for e in info.value.errors)

    def test_price_boundaries_accepted(self) -> None:
        assert validate_listing_input(_valid_body(price=0)).price == 0
        assert validate_listing_input(_valid_body(price=100_000_000)).price == 100_000_000

    def test_twenty_keywords_accepted(self) -> None:
        data = validate_listing_input(_valid_body(keywords=[f"k{i}" for i in range(20)]))
        assert data.keywords is not None and len(data.keywords) == 20

    def test_non_object_body(self) -> None:
        with pytest.raises(ValidationError) as info:
            validate_listing_input(["not", "an", "object"])
        assert info.value.errors[0]["field"] == "body"


class TestValidateSearchQuery:
    def test_trimmed(self) -> None:
        assert validate_search_query({"q": "  cedar  "}) == "cedar"

    @pytest.mark.parametrize("body", [{}, {"q": ""}, {"q": "   "}, {"q": "x" * 201}])
    def test_rejected(self, body: dict[str, object]) -> None:
        with pytest.raises(ValidationError) as info:
            validate_search_query(body)
        assert info.value.errors[0]["field"] == "q"


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestExceptions:
    def test_validation_error_lists_fields(self) -> None:
        err = ValidationError([{"field": "name", "message": "x"}, {"field": "email", "message": "y"}])
        assert "name, email" in str(err)

    def test_notification_failure_carries_status(self) -> None:
        err = NotificationFailure("bad", status_code=401)
        assert err.status_code == 401
        assert "HTTP 401" in str(err)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestLogging:
    def test_filter_injects_correlation_id(self) -> None:
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "hello", None, None)
        token = CORRELATION_ID_CTX.set("req-123")
        try:
            CorrelationContextFilter().filter(record)
        finally:
            CORRELATION_ID_CTX.reset(token)
        assert record.correlation_id == "req-123"  # type: ignore[attr-defined]

    def test_default_correlation_id_is_dash(self) -> None:
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "hello", None, None)
        CorrelationContextFilter().filter(record)
        assert record.correlation_id == "-"  # type: ignore[attr-defined]

    def test_json_formatter_emits_one_object(self) -> None:
        record = logging.LogRecord("homex.x", logging.WARNING, __file__, 1, "n=%d", (3,), None)
        record.event = "SWEEP_COMPLETE"
        CorrelationContextFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "homex.x"
        assert payload["message"] == "n=3"
        assert payload["event"] == "SWEEP_COMPLETE"
        assert payload["correlationId"] == "-"
        assert payload["extra"] == {}

    def test_json_formatter_keeps_other_extras(self) -> None:
        record = logging.LogRecord("homex.x", logging.INFO, __file__, 1, "hi", None, None)
        record.listing_id = "a" * 24
        token = CORRELATION_ID_CTX.set("9c41d07e")
        try:
            CorrelationContextFilter().filter(record)
        finally:
            CORRELATION_ID_CTX.reset(token)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["correlationId"] == "9c41d07e"
        assert payload["event"] is None
        assert payload["extra"] == {"listing_id": "a" * 24}

    def test_configure_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            configure_logging(level="LOUD")

    def test_repeat_configure_keeps_single_handler(self) -> None:
        stream = io.StringIO()
        configure_logging(level="INFO", fmt="json", force=True, stream=stream)
        configure_logging(level="warning")
        ours = [h for h in logging.getLogger().handlers if h.get_name() == "homex"]
        assert len(ours) == 1
        assert ours[0].level == logging.WARNING
        logging.getLogger("homex.test").warning("sweep done", extra={"event": "SWEEP_COMPLETE"})
        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert line["message"] == "sweep done"
        assert line["event"] == "SWEEP_COMPLETE"
