"""
Rule storage adapter, synchronizer and conversion tooling.
"""
