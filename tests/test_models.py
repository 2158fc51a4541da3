"""Tests for session document parsing and cloning."""

import json
import logging

import pytest

from healthcheck_sync.errors import DocumentFormatError
from healthcheck_sync.models import (
    ActionItem,
    ActionType,
    Participant,
    Phase,
    RatingEntry,
    Role,
    SessionDocument,
    SessionStatus,
    resolve_status_alias,
)


class TestClone:
    """Clones never share mutable state with the original"""

    def test_clone_is_deep(self, document):
        """Test mutating a clone leaves the original untouched"""
        copy = document.clone()
        copy.participants[0].name = "Changed"
        copy.ratings.setdefault("alice", {})["speed"] = RatingEntry(rating=5)
        copy.settings.is_anonymous = True

        assert document.participants[0].name == "Fiona"
        assert document.ratings == {}
        assert document.settings.is_anonymous is False

    def test_clone_equals_original(self, document):
        """Test a clone compares equal to its source"""
        assert document.clone() == document


class TestWireFormat:
    """camelCase wire shape"""

    def test_document_keys_are_camel_case(self, document):
        """Test serialised keys use the shared wire names"""
        data = document.to_dict()
        assert data["teamId"] == "team-1"
        assert data["discussionFocusId"] is None
        assert data["settings"] == {"isAnonymous": False, "revealRoti": False}
        assert data["participants"][0] == {
            "id": "fac",
            "name": "Fiona",
            "color": "bg-indigo-500",
            "role": "facilitator",
        }

    def test_document_survives_json(self, document):
        """Test a document parsed back from JSON equals the original"""
        document.ratings["alice"] = {"speed": RatingEntry(rating=4, comment="ok")}
        document.roti["bob"] = 3
        document.actions.append(ActionItem("a1", "Fix CI", linked_dimension_id="speed"))

        parsed = SessionDocument.from_dict(json.loads(json.dumps(document.to_dict())))
        assert parsed == document

    def test_unknown_keys_are_preserved(self):
        """Test fields this engine does not model are carried through"""
        doc = SessionDocument.from_dict({"id": "s", "customField": {"x": 1}})
        assert doc.to_dict()["customField"] == {"x": 1}

    def test_missing_optional_fields_default(self):
        """Test a minimal document gets SURVEY/ACTIVE defaults"""
        doc = SessionDocument.from_dict({"id": "s"})
        assert doc.phase == Phase.SURVEY
        assert doc.status == SessionStatus.ACTIVE
        assert doc.participants == []
        assert doc.ratings == {}


class TestLegacyValues:
    """Older documents are read leniently"""

    def test_in_progress_status_is_active(self):
        """Test IN_PROGRESS is read as ACTIVE"""
        doc = SessionDocument.from_dict({"id": "s", "status": "IN_PROGRESS"})
        assert doc.status == SessionStatus.ACTIVE

    def test_resolve_status_alias_normalises_case(self):
        """Test alias resolution trims and upper-cases"""
        assert resolve_status_alias(" in_progress ") == "ACTIVE"
        assert resolve_status_alias("closed") == "CLOSED"

    def test_zero_rating_placeholder_reads_as_none(self):
        """Test a rating of 0 is treated as not yet scored"""
        entry = RatingEntry.from_dict({"rating": 0, "comment": "later"})
        assert entry.rating is None
        assert entry.comment == "later"

    def test_linked_ticket_id_is_accepted(self):
        """Test the old linkedTicketId key populates linked_dimension_id"""
        action = ActionItem.from_dict({"id": "a", "text": "t", "linkedTicketId": "speed"})
        assert action.linked_dimension_id == "speed"

    def test_out_of_range_roti_votes_are_dropped(self):
        """Test ROTI values outside 1..5 are filtered on read"""
        doc = SessionDocument.from_dict({"id": "s", "roti": {"a": 0, "b": 6, "c": 5}})
        assert doc.roti == {"c": 5}

    def test_boolean_scores_are_not_ratings(self):
        """Test JSON true/false never load as a score"""
        assert RatingEntry.from_dict({"rating": True}).rating is None
        doc = SessionDocument.from_dict({"id": "s", "roti": {"a": True, "b": 4}})
        assert doc.roti == {"b": 4}

    def test_unknown_role_falls_back_to_participant(self):
        """Test an unrecognised role is read as participant"""
        p = Participant.from_dict({"id": "x", "name": "X", "role": "admin"})
        assert p.role == Role.PARTICIPANT

    def test_unknown_action_type_falls_back_to_new(self):
        """Test an unrecognised action type is read as new"""
        action = ActionItem.from_dict({"id": "a", "text": "t", "type": "weird"})
        assert action.type == ActionType.NEW


class TestInvalidDocuments:
    """Malformed input raises DocumentFormatError"""

    def test_non_dict_rejected(self):
        """Test a list is not a document"""
        with pytest.raises(DocumentFormatError):
            SessionDocument.from_dict([])  # type: ignore[arg-type]

    def test_missing_id_rejected(self):
        """Test the id field is required"""
        with pytest.raises(DocumentFormatError):
            SessionDocument.from_dict({"phase": "SURVEY"})

    def test_unknown_phase_rejected(self):
        """Test an unknown phase name is an error"""
        with pytest.raises(DocumentFormatError):
            SessionDocument.from_dict({"id": "s", "phase": "PLANNING"})


class TestLookups:
    """Document lookup helpers"""

    def test_find_participant(self, document):
        assert document.find_participant("alice").name == "Alice"
        assert document.find_participant("nobody") is None

    def test_has_dimension(self, document):
        assert document.has_dimension("speed")
        assert not document.has_dimension("missing")
        assert not document.has_dimension(None)

    def test_is_facilitator(self, facilitator, alice):
        assert facilitator.is_facilitator
        assert not alice.is_facilitator


class TestDanglingDimensionReferences:
    """References to dimensions the document does not define are dropped on load"""

    def test_dropped_and_logged(self, document, caplog):
        data = document.to_dict()
        data["ratings"] = {
            "alice": {"speed": {"rating": 4}, "gone": {"rating": 2}},
            "bob": {"gone": {"rating": 1}},
        }
        data["actions"] = [{"id": "a1", "text": "Fix", "linkedDimensionId": "gone"}]
        data["discussionFocusId"] = "gone"

        with caplog.at_level(logging.WARNING):
            doc = SessionDocument.from_dict(data)

        assert doc.ratings == {"alice": {"speed": RatingEntry(rating=4)}}
        assert doc.actions[0].linked_dimension_id is None
        assert doc.actions[0].text == "Fix"
        assert doc.discussion_focus_id is None
        assert "gone" in caplog.text

    def test_valid_references_kept(self, document):
        document.ratings["alice"] = {"fun": RatingEntry(rating=3)}
        document.discussion_focus_id = "fun"
        document.actions.append(ActionItem("a1", "Pair", linked_dimension_id="fun"))

        assert SessionDocument.from_dict(document.to_dict()) == document
