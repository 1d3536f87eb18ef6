"""SQLAlchemy ORM models for Tidewatch."""

from tidewatch.models.base import Base
from tidewatch.models.event import Event
from tidewatch.models.pipeline_run import PipelineRun
from tidewatch.models.site_setting import SiteSetting

__all__ = [
    "Base",
    "Event",
    "PipelineRun",
    "SiteSetting",
]
