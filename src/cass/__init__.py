"""
CASS - Content Admission & Staging System

Admits startup, funding-program and resource records from external feeds,
resolves fragments describing the same entity, rescores them and stages
the survivors for human review.
"""

__version__ = "0.1.0"
