"""Core library for the agentboard task-orchestration pipeline.

The modules here hold the message and task queues, the model-backed responder
and work-item extractor, and the broadcaster that mirrors pipeline activity to
live dashboard clients.
"""

__all__ = ["config", "storage", "domain", "jobs", "pipeline", "extractor", "responder", "broadcast"]
__version__ = "0.1.0"
