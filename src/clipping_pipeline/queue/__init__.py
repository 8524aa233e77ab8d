"""
Stage queues.

The orchestrator talks to queues only through `StageQueueBackend`
(`interfaces.py`); `StageQueues` is the in-process implementation.
"""
