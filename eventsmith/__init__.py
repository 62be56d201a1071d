"""
Eventsmith - Natural-language calendar scheduling
=================================================

Turns free-form requests ("gym 6-7pm tomorrow", "what's on this week")
into validated operations against a calendar store.

Modules:
- core: Configuration, logging, error taxonomy, text-completion clients
- tools: Calendar store adapters (Google Calendar, in-memory)
- scheduling: Extraction, temporal repair, duplicate detection,
  creation/mutation, diagnostics and the request-level agent
"""

__version__ = "1.0.0"
__author__ = "Eventsmith Project"
