"""
Cyberbrief

Daily cybersecurity news briefing: collects RSS feeds, hands them to an AI
agent container for analysis and writes a markdown report. Also ships the
helpers used to lint and scaffold the Kestra flows that schedule it.
"""

__version__ = "1.0.0"
