"""
Learning Companion: a cost-aware AI tutoring backend for young learners.

Tracks tutoring sessions, remembers each learner across sessions, keeps LLM
spend inside a daily budget and degrades to offline content when the
provider is unavailable.
"""

__version__ = "1.0.0"
