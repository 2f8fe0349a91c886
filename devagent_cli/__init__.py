"""
DevAgent CLI - command-line interface for the DevAgent job daemon.

Provides subcommands for:
- devagent run       - Run a workflow now
- devagent new       - Write a workflow file from flags and schedule it
- devagent add       - Register a workflow with the scheduler
- devagent schedule  - List/remove scheduled jobs
- devagent daemon    - Run the scheduler
- devagent config    - View/edit configuration
"""

__version__ = "0.1.0"
