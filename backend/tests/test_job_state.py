"""
Tests for the job status state machine.
"""

import pytest

from recodarr.jobs import (
    InvalidStateTransitionError,
    JobStatus,
    TERMINAL_JOB_STATES,
    can_transition_job,
    is_job_terminal,
    validate_job_transition,
)


class TestJobTransitions:
    """Allowed and forbidden job status transitions."""
    
    @pytest.mark.parametrize("target", [
        JobStatus.PROCESSING,
        JobStatus.CANCELLED,
    ])
    def test_queued_job_can_start_or_be_cancelled(self, target):
        assert can_transition_job(JobStatus.QUEUED, target)
    
    @pytest.mark.parametrize("target", [
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    ])
    def test_processing_job_can_reach_any_terminal_state(self, target):
        assert can_transition_job(JobStatus.PROCESSING, target)
    
    def test_queued_job_cannot_complete_without_running(self):
        assert not can_transition_job(JobStatus.QUEUED, JobStatus.COMPLETED)
        assert not can_transition_job(JobStatus.QUEUED, JobStatus.FAILED)
    
    def test_processing_job_cannot_return_to_queue(self):
        assert not can_transition_job(JobStatus.PROCESSING, JobStatus.QUEUED)
    
    @pytest.mark.parametrize("terminal", sorted(TERMINAL_JOB_STATES, key=lambda s: s.value))
    def test_terminal_states_are_immutable(self, terminal):
        """
        GIVEN: A job in a terminal state
        WHEN: Any transition is checked, including to the same state
        THEN: It is rejected
        """
        assert is_job_terminal(terminal)
        for target in JobStatus:
            assert not can_transition_job(terminal, target)
    
    def test_same_non_terminal_state_allows_patch_updates(self):
        assert can_transition_job(JobStatus.PROCESSING, JobStatus.PROCESSING)
        assert can_transition_job(JobStatus.QUEUED, JobStatus.QUEUED)
    
    def test_validate_raises_with_context(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_job_transition("job_1", JobStatus.COMPLETED, JobStatus.QUEUED)
        
        assert exc_info.value.job_id == "job_1"
        assert exc_info.value.current_state == "completed"
        assert exc_info.value.target_state == "queued"
