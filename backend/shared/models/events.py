from datetime import datetime
from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

from .analysis import AnalysisState


class EventType(str, Enum):
    ANALYSIS_SUBMITTED = "analysis_submitted"
    ANALYSIS_STATUS_UPDATED = "analysis_status_updated"
    ANALYSIS_COMPLETED = "analysis_completed"
    ERROR_OCCURRED = "error_occurred"


class BaseEvent(BaseModel):
    """Base event model for Kafka messages"""
    model_config = ConfigDict(use_enum_values=True)

    event_type: EventType
    scenario_id: str
    job_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AnalysisSubmittedEvent(BaseEvent):
    """Event when a job has been admitted to the queue"""
    event_type: EventType = EventType.ANALYSIS_SUBMITTED


class AnalysisStatusUpdatedEvent(BaseEvent):
    """Event when a job changes state or reports progress"""
    event_type: EventType = EventType.ANALYSIS_STATUS_UPDATED
    state: AnalysisState
    progress: float
    previous_state: Optional[AnalysisState] = None


class AnalysisCompletedEvent(BaseEvent):
    """Event when a job finishes with a result snapshot"""
    event_type: EventType = EventType.ANALYSIS_COMPLETED
    result: Dict[str, Any]
    processing_time_ms: Optional[float] = None


class ErrorEvent(BaseEvent):
    """Event for failed jobs"""
    event_type: EventType = EventType.ERROR_OCCURRED
    error_type: str
    error_message: str
    error_details: Dict[str, Any] = Field(default_factory=dict)


class EventFactory:
    """Factory for creating analysis job events"""

    @staticmethod
    def create_submitted_event(scenario_id: str, job_id: str, **kwargs) -> AnalysisSubmittedEvent:
        return AnalysisSubmittedEvent(scenario_id=scenario_id, job_id=job_id, **kwargs)

    @staticmethod
    def create_status_update_event(scenario_id: str, job_id: str, state: AnalysisState, progress: float,
                                   previous_state: Optional[AnalysisState] = None,
                                   **kwargs) -> AnalysisStatusUpdatedEvent:
        return AnalysisStatusUpdatedEvent(
            scenario_id=scenario_id,
            job_id=job_id,
            state=state,
            progress=progress,
            previous_state=previous_state,
            **kwargs
        )

    @staticmethod
    def create_completed_event(scenario_id: str, job_id: str, result: Dict[str, Any],
                               processing_time_ms: Optional[float] = None, **kwargs) -> AnalysisCompletedEvent:
        return AnalysisCompletedEvent(
            scenario_id=scenario_id,
            job_id=job_id,
            result=result,
            processing_time_ms=processing_time_ms,
            **kwargs
        )

    @staticmethod
    def create_error_event(scenario_id: str, job_id: str, error_type: str, error_message: str,
                           error_details: Dict[str, Any] = None, **kwargs) -> ErrorEvent:
        return ErrorEvent(
            scenario_id=scenario_id,
            job_id=job_id,
            error_type=error_type,
            error_message=error_message,
            error_details=error_details or {},
            **kwargs
        )
