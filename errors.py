"""Error taxonomy for the scheduled test pipeline.

Only DiscoveryError may terminate an invocation. Every other error is caught
at the schedule boundary by the pipeline driver, logged and audited.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all scheduled-pipeline failures."""


class DiscoveryError(PipelineError):
    """Due schedules could not be listed (datastore unreachable)."""


class DigestError(PipelineError):
    """Recent materials could not be read. Treated as an empty digest."""


class GenerationError(PipelineError):
    """The AI service failed or returned output that did not validate."""


class PersistenceError(PipelineError):
    """A generated test could not be written. The synthesis cost is lost."""


class NotificationError(PipelineError):
    """A dispatch attempt could not be completed or logged."""


class EscalationError(PipelineError):
    """Guardian escalation could not be evaluated."""
