##
# .protocol
##
"""
PQ version 3.0 protocol implementation.

`element3` holds the message classes, `xact3` the protocol transactions that
validate message ordering, and `client3` the socket-level connection that
drives them.
"""
