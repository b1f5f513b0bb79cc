##
# .protocol.message_types
##
"""
Data module providing a sequence of bytes objects whose value corresponds to its
index in the sequence.

Element and transaction modules use it so that message type identifiers are
shared objects. Compare them with ``==``, not ``is``.
"""
message_types = tuple([bytes((x,)) for x in range(256)])
