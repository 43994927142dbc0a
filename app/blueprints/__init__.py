"""
DMAIC Workflow Service
Blueprint registry.
"""
