"""
Certification Tracker
Blueprint registry.
"""
