"""Tests for the review-group state machine."""

import pytest

from licensing_engine.errors import InvalidGroupError, ValidationError
from licensing_engine.services.workflow import (
    GROUP_SEQUENCE,
    IN_PROCESS_STATUS,
    WorkflowGroup,
    WorkflowStateMachine,
)


class TestGroupSequence:
    """Test group ordering."""

    def test_sequence_order(self):
        """Groups are ordered from intake to license download."""
        assert GROUP_SEQUENCE == (
            "APPLICANT",
            "LSO",
            "LSM",
            "DO",
            "LSM2",
            "TL",
            "DEO",
            "DG",
            "Download License",
        )

    def test_index(self):
        assert WorkflowStateMachine.index("APPLICANT") == 0
        assert WorkflowStateMachine.index("DO") == 3
        assert WorkflowStateMachine.index("Download License") == 8
        assert WorkflowStateMachine.index("ARCHIVED") == -1
        assert WorkflowStateMachine.index(None) == -1

    def test_validate_group(self):
        """Unknown groups raise InvalidGroupError, a ValidationError."""
        assert WorkflowStateMachine.validate_group("TL") == "TL"

        with pytest.raises(InvalidGroupError) as exc_info:
            WorkflowStateMachine.validate_group("CEO")
        assert exc_info.value.group == "CEO"
        assert isinstance(exc_info.value, ValidationError)

        with pytest.raises(InvalidGroupError):
            WorkflowStateMachine.validate_group(None)

    def test_group_names_are_case_sensitive(self):
        assert WorkflowStateMachine.is_known_group("lso") is False
        assert WorkflowStateMachine.is_known_group("download license") is False


class TestStatusForGroup:
    """Test the application status implied by each group."""

    @pytest.mark.parametrize(
        "group", ["LSO", "LSM", "DO", "LSM2", "TL", "DEO", "DG"]
    )
    def test_review_groups_set_in_process(self, group):
        assert WorkflowStateMachine.status_for_group(group) == IN_PROCESS_STATUS

    def test_applicant_and_download_keep_status(self):
        assert WorkflowStateMachine.status_for_group("APPLICANT") is None
        assert WorkflowStateMachine.status_for_group("Download License") is None

    def test_terminal(self):
        assert WorkflowStateMachine.is_terminal(WorkflowGroup.DOWNLOAD_LICENSE.value)
        assert not WorkflowStateMachine.is_terminal("DG")
        assert not WorkflowStateMachine.is_terminal(None)


class TestSentBack:
    """Test sent-back detection."""

    def test_returned_to_earlier_group(self):
        """DO sending the file back to LSO is a send back."""
        history = ["LSO", "LSM", "DO", "LSO"]
        assert WorkflowStateMachine.is_sent_back("LSO", history) is True

    def test_forward_move_is_not_sent_back(self):
        history = ["LSO", "LSM", "DO"]
        assert WorkflowStateMachine.is_sent_back("DO", history) is False

    def test_only_second_to_last_entry_counts(self):
        """An older, later-stage entry does not make the file sent back."""
        history = ["DG", "LSO", "LSM"]
        assert WorkflowStateMachine.is_sent_back("LSM", history) is False

    def test_same_group_is_not_sent_back(self):
        assert WorkflowStateMachine.is_sent_back("LSM", ["LSM", "LSM"]) is False

    def test_short_history(self):
        assert WorkflowStateMachine.is_sent_back("APPLICANT", []) is False
        assert WorkflowStateMachine.is_sent_back("APPLICANT", ["DG"]) is False

    def test_unknown_previous_group(self):
        """Legacy group names in history are never treated as later."""
        assert WorkflowStateMachine.is_sent_back("LSO", ["ARCHIVED", "LSO"]) is False

    def test_unknown_current_group(self):
        """An unknown current group sorts before everything."""
        assert WorkflowStateMachine.is_sent_back("ARCHIVED", ["LSO", "ARCHIVED"]) is True
