"""Pipeline orchestration -- request schemas, the stage orchestrator, and the
service that creates jobs and hands them to the runner."""
