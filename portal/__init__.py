"""Learner portal: SCORM attempt synchronization service."""

__version__ = "0.1.0"
