"""
crosslink core: configuration, exceptions, logging, metrics and crypto helpers
shared by every other package.
"""
