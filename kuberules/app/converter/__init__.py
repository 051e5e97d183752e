"""
Policy file to Rule manifest conversion.
"""
