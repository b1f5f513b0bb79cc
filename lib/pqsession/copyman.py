##
# .copyman - COPY FROM STDIN state
##
"""
State of a COPY FROM STDIN started by `copy_from_stdin`.

The stream is in one of two states:

 ``copy_in``
  Data may be sent with `copy_send_rows` (binary format) or `copy_write`
  (text format), and the COPY is finished by `copy_done` or `copy_fail`.

 ``copy_error``
  The server aborted the COPY while data was being sent. Every further COPY
  operation fails with the server's error until `copy_done` or `copy_fail`
  finalizes the stream.

Binary COPY data is framed by a header and a trailer and holds one tuple per
row::

	int16 ncolumns, (int32 length, data | int32 -1) * ncolumns
"""
from . import exceptions as pg_exc
from .python.structlib import short_pack, long_pack

__all__ = ['CopyStream', 'binary_header', 'binary_trailer', 'encode_rows']

#: Signature, flags and header extension length.
binary_header = b'PGCOPY\n\xff\r\n\x00' + long_pack(0) + long_pack(0)
binary_trailer = short_pack(-1)
null_field = long_pack(-1)

format_tags = {
	0 : 'text',
	1 : 'binary',
}

def encode_rows(rows, oids, typio):
	"""
	Serialize the `rows` as binary COPY tuples of the types `oids`.
	"""
	ncols = len(oids)
	packs = [typio.resolve(x)[0] for x in oids]
	header = short_pack(ncols)
	is_null = typio.is_null
	data = []
	for row in rows:
		if not isinstance(row, (list, tuple)):
			raise pg_exc.ParameterError(
				"COPY rows must be lists or tuples, not %r" %(type(row).__name__,)
			)
		if len(row) != ncols:
			raise pg_exc.ParameterMismatchError(
				"COPY row has %d columns, but %d were expected" %(len(row), ncols),
				details = {'context' : repr(row)[:80]},
			)
		data.append(header)
		for i, (pack, value) in enumerate(zip(packs, row)):
			if is_null(value):
				data.append(null_field)
				continue
			try:
				value = pack(value)
			except Exception as err:
				raise pg_exc.ParameterError(
					"could not pack COPY column %d of type %s" %(
						i + 1, typio.type_name(oids[i])
					),
					details = {'context' : repr(value)[:80]},
				) from err
			data.append(long_pack(len(value)))
			data.append(value)
	return b''.join(data)

class CopyStream(object):
	"""
	A COPY FROM STDIN in progress.
	"""
	__slots__ = ('format', 'oids', 'tags', 'state', 'error')

	def __init__(self, format, oids = (), tags = ()):
		self.format = format
		self.oids = tuple(oids)
		self.tags = list(tags)
		self.state = 'copy_in'
		self.error = None

	def __repr__(self):
		return '<{mod}.{name} {format} {state}>'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			format = self.format,
			state = self.state,
		)

	@property
	def binary(self):
		return self.format == 'binary'

	def abort(self, error):
		self.state = 'copy_error'
		self.error = error

	def check_send(self, format):
		"""
		The error preventing data of `format` from being sent, if any.
		"""
		if self.state == 'copy_error':
			return self.error
		if format != self.format:
			if self.binary:
				return pg_exc.NotBinaryFormatError(
					"COPY was started in binary format; send rows with copy_send_rows"
				)
			return pg_exc.NotTextFormatError(
				"COPY was started in text format; send data with copy_write"
			)
		return None

	def encode(self, rows, typio):
		return encode_rows(rows, self.oids, typio)
