"""
Sihat TCM - Traditional Chinese Medicine diagnosis backend
"""
__version__ = "1.0.0"
