"""Daily GitHub triage pipeline: collect, classify, brief, deliver, learn."""

__version__ = "0.1.0"
