from app.models.project import Milestone, Project
from app.models.time_entry import TimeEntry
from app.models.time_entry_edit import TimeEntryEdit
from app.models.time_tracking_settings import TimeTrackingSettings

__all__ = [
    "Milestone",
    "Project",
    "TimeEntry",
    "TimeEntryEdit",
    "TimeTrackingSettings",
]
