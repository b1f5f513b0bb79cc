##
# .protocol.buffer
##
"""
Message framing for the data read from the wire.

Data is buffered until complete messages have been received; `read` yields
them as ``(type, body)`` pairs.
"""
__all__ = ['pq_message_stream']

import struct
from .message_types import message_types

xl_unpack = struct.Struct('!xL').unpack_from

class pq_message_stream(object):
	'provide a message stream from a data stream'
	_limit = 512 * 4

	def __init__(self):
		self._data = bytearray()
		self._start = 0

	def truncate(self):
		"remove all data in the buffer"
		del self._data[:]
		self._start = 0

	def _compact(self):
		"[internal] drop the data of consumed messages"
		if self._start > self._limit:
			del self._data[:self._start]
			self._start = 0

	def _message_at(self, pos, len = len, xl_unpack = xl_unpack):
		"[internal] the end position of the message at `pos`, or None"
		data = self._data
		if len(data) - pos < 5:
			return None
		length, = xl_unpack(data, pos)
		if length < 4:
			raise ValueError("invalid message size '%d'" %(length,))
		end = pos + 1 + length
		if end > len(data):
			return None
		return end

	def has_message(self):
		"if the buffer has a message available"
		return self._message_at(self._start) is not None

	def __len__(self):
		"number of messages in buffer"
		count = 0
		pos = self._start
		while True:
			end = self._message_at(pos)
			if end is None:
				break
			count += 1
			pos = end
		return count

	def _get_message(self, mtypes = message_types):
		start = self._start
		end = self._message_at(start)
		if end is None:
			return None
		data = self._data
		self._start = end
		return (mtypes[data[start]], bytes(data[start+5:end]))

	def next_message(self):
		self._compact()
		return self._get_message()

	def __iter__(self):
		return self

	def __next__(self):
		msg = self.next_message()
		if msg is None:
			raise StopIteration
		return msg

	def read(self, num = 0xFFFFFFFF, len = len):
		self._compact()
		l = []
		while len(l) < num:
			msg = self._get_message()
			if msg is None:
				break
			l.append(msg)
		return l

	def write(self, data):
		# Always append data; it's a stream.
		self._data += data

	def getvalue(self):
		return bytes(self._data[self._start:])
