"""
core/__init__.py

Core routing and analysis modules.

This package contains the central coordination logic for the assistant:
- classifier: Decides whether a chat message is a code-analysis request
- dispatcher: Parallel multi-aspect analysis with partial-failure aggregation
- orchestrator: Chat routing, the analysis workflow and report rendering

These modules handle the high-level flow of user requests through the system.
"""
