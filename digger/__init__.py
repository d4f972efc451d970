from .errors import DiggerError, FetchFailed, InvalidUrl
from .models import Report
from .orchestrator import Inspector
from .urls import normalize_url

__all__ = ["DiggerError", "FetchFailed", "InvalidUrl", "Inspector", "Report", "normalize_url"]
