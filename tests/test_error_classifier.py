"""
Tests for ErrorClassifier priority rules and provider hooks.
"""

import json

from connectors.classifier import ErrorClassifier
from connectors.models import (
    ConnectionNotEstablished,
    InsufficientScope,
    RequiredCustomerAction,
    Transient,
    Unauthorized,
    Unknown,
)
from connectors.providers.auravant import AuravantErrorClassifier
from connectors.providers.johndeere import DeereErrorClassifier

RCA_HEADERS = {
    "X-Deere-Warning": "Required customer action",
    "X-Deere-Terms-Location": "https://rca.deere.com/terms/123",
}


class TestPriority:
    def test_required_action_beats_scope_body(self):
        body = {"message": "Token does not have proper access", "required_scopes": ["ag2"]}
        category = DeereErrorClassifier().classify(403, RCA_HEADERS, body)
        assert category == RequiredCustomerAction(url="https://rca.deere.com/terms/123")

    def test_required_action_beats_401(self):
        category = DeereErrorClassifier().classify(401, RCA_HEADERS, None)
        assert isinstance(category, RequiredCustomerAction)

    def test_header_names_are_case_insensitive(self):
        headers = {k.lower(): v for k, v in RCA_HEADERS.items()}
        category = DeereErrorClassifier().classify(403, headers, "")
        assert isinstance(category, RequiredCustomerAction)

    def test_warning_without_location_is_not_required_action(self):
        headers = {"X-Deere-Warning": "Required customer action"}
        category = DeereErrorClassifier().classify(403, headers, {"message": "Forbidden"})
        assert isinstance(category, Unknown)

    def test_generic_classifier_ignores_required_action_headers(self):
        category = ErrorClassifier().classify(403, RCA_HEADERS, {"message": "Forbidden"})
        assert isinstance(category, Unknown)

    def test_scope_beats_connection(self):
        body = {"message": "Access denied: insufficient scope"}
        category = ErrorClassifier().classify(403, {}, body)
        assert isinstance(category, InsufficientScope)

    def test_body_rules_beat_401(self):
        category = ErrorClassifier().classify(401, {}, {"error": "insufficient_scope"})
        assert isinstance(category, InsufficientScope)


class TestScope:
    def test_missing_is_required_minus_current(self):
        body = {
            "message": "Token does not have proper access",
            "required_scopes": ["ag1", "ag2", "eq1"],
            "current_scopes": ["ag1"],
        }
        category = ErrorClassifier().classify(403, {}, body)
        assert category == InsufficientScope(missing=frozenset({"ag2", "eq1"}))

    def test_space_separated_scopes(self):
        body = {"error": "insufficient_scope", "required_scopes": "files work1", "current_scopes": "work1"}
        category = ErrorClassifier().classify(403, {}, body)
        assert category.missing == frozenset({"files"})

    def test_without_scope_lists_missing_is_empty(self):
        category = ErrorClassifier().classify(403, {}, "insufficient scope for this resource")
        assert category == InsufficientScope(missing=frozenset())

    def test_json_text_body_is_parsed(self):
        body = json.dumps({"message": "proper access required", "required_scopes": ["files"]})
        category = ErrorClassifier().classify(403, {}, body.encode())
        assert category.missing == frozenset({"files"})


class TestStatusRules:
    def test_connection_not_established(self):
        category = ErrorClassifier().classify(403, {}, {"message": "Access Denied"})
        assert isinstance(category, ConnectionNotEstablished)

    def test_unauthorized(self):
        assert isinstance(ErrorClassifier().classify(401, {}, ""), Unauthorized)

    def test_transient_statuses(self):
        classifier = ErrorClassifier()
        for code in (429, 502, 503, 504):
            assert isinstance(classifier.classify(code, {}, None), Transient)

    def test_transient_set_is_configurable(self):
        classifier = ErrorClassifier(transient_statuses=[500])
        assert isinstance(classifier.classify(500, {}, None), Transient)
        assert isinstance(classifier.classify(503, {}, None), Unknown)

    def test_5xx_body_does_not_trigger_body_rules(self):
        category = ErrorClassifier().classify(503, {}, {"message": "connection pool exhausted"})
        assert isinstance(category, Transient)

    def test_unknown_carries_message(self):
        category = ErrorClassifier().classify(400, {}, {"error_description": "Bad field id"})
        assert category == Unknown(message="Bad field id")

    def test_unknown_falls_back_to_status(self):
        category = ErrorClassifier().classify(418, {}, None)
        assert category == Unknown(message="HTTP 418")


class TestProviderHooks:
    def test_auravant_message_from_msg(self):
        category = AuravantErrorClassifier().classify(200, {}, {"code": 7, "msg": "Campo inexistente"})
        assert category == Unknown(message="Campo inexistente")

    def test_auravant_connection_message(self):
        category = AuravantErrorClassifier().classify(403, {}, {"code": 3, "msg": "Access denied"})
        assert isinstance(category, ConnectionNotEstablished)
