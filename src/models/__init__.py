from src.models.automation_job import AutomationJob, JobStatus
from src.models.automation_log import AutomationLog, LogAction, LogStatus, TriggeredBy

__all__ = [
    "AutomationJob", "JobStatus",
    "AutomationLog", "LogAction", "LogStatus", "TriggeredBy",
]
