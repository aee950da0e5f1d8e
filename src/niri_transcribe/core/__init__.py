"""Pipeline plumbing: events, worker threads, shutdown signalling and the orchestrator.

Keep this module lightweight: the orchestrator imports every subsystem, so it is not re-exported here.
"""
