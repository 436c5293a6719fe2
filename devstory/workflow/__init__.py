"""Workflow: state machine, dependency resolution, refinement and execution."""
