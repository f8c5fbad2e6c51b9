"""
Infrastructure Package
======================

Cross-context technical infrastructure (database engine and sessions).
"""
