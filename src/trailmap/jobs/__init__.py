"""Job tracking -- progress snapshots, the keyed progress store, and the runner.

Provides the Job/JobSnapshot schemas, the ProgressStore interface with
in-memory and Redis implementations, and the JobRunner worker pool that
executes pipelines detached from the request that started them.
"""
