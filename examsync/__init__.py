"""
Exam Session Sync - Client Package

This package contains the client-side core of the exam platform:
- models: Data structures for sessions, submissions and configuration
- lifecycle: Session creation, start, attempt counting and completion
- coordinator: Direct-or-queued exam submission and replay on reconnect
- offline_queue: Durable local storage for submissions awaiting the network
- progress: Local snapshots of in-progress exams for crash recovery
- connectivity: Online/offline tracking with background liveness probes
"""

__version__ = "1.3.0"
