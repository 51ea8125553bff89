"""Playbook execution engine: durable, resumable runs of AGENT/DATA/BRANCH/API playbooks."""

__version__ = "0.1.0"
