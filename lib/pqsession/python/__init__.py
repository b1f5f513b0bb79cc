##
# .python
##
"""
Python tools used by the protocol implementation.
"""
