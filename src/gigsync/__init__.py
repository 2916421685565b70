"""gigsync: keep freelance opportunity schedules in sync with Google Calendar."""

__version__ = "0.1.0"
