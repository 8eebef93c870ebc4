"""
Core modules for the generation orchestrator.

This package contains the capability registry, cost resolution, job
polling, artifact materialization and the pipeline that ties them together.
"""
