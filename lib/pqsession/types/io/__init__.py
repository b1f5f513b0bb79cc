##
# .types.io - I/O routines for packing and unpacking data
##
"""
PostgreSQL type I/O routines--packing and unpacking functions.

This package manages the modules providing I/O routines and the `TypeIO`
registry a connection uses to find them.

A codec is either a constant ``(pack, unpack)`` pair or a factory called as
``codec(oid, typio, opts)`` that returns the pair. ``pack`` turns a Python
object into the binary wire form, ``unpack`` does the reverse. Types without
a codec are transferred in the text format.
"""
from itertools import cycle, chain
from codecs import lookup as lookup_codecs

from ... import types as pg_types
from ... import exceptions as pg_exc
from ... import message as pg_msg
from ...protocol import element3 as element
from ...protocol.message_types import message_types
from . import lib as io_lib

io_modules = {
	'builtins' : (
		pg_types.BOOLOID,
		pg_types.CHAROID,
		pg_types.BYTEAOID,

		pg_types.INT2OID,
		pg_types.INT4OID,
		pg_types.INT8OID,
		pg_types.OIDOID,

		pg_types.FLOAT4OID,
		pg_types.FLOAT8OID,

		pg_types.TEXTOID,
		pg_types.VARCHAROID,
		pg_types.BPCHAROID,
		pg_types.NAMEOID,
		pg_types.UNKNOWNOID,
	),

	'stdlib_datetime' : (
		pg_types.DATEOID,
		pg_types.TIMESTAMPOID,
		pg_types.TIMESTAMPTZOID
	),

	'stdlib_uuid' : (
		pg_types.UUIDOID,
	),

	'stdlib_json' : (
		pg_types.JSONOID,
		pg_types.JSONBOID,
	),

	# Resolved by name; the Oid is found in pg_type after connecting.
	'contrib_hstore' : (
		'hstore',
	),
}

# OID -> module name
module_io = dict(
	chain.from_iterable((
		zip(x[1], cycle((x[0],))) for x in io_modules.items()
	))
)

#: Types whose codec is installed by the type cache refresh after connect.
default_dynamic_codecs = ('hstore',)

def load(relmod):
	return __import__(relmod, globals = globals(), locals = locals(), fromlist = [''], level = 1)

def resolve(oid):
	io = module_io.get(oid)
	if io is None:
		return None
	if io.__class__ is str:
		module_io.update(load(io).oid_to_io)
		io = module_io[oid]
	return io

# Map element3.Notice field identifiers
# to names used by message.Message.
notice_field_to_name = {
	message_types[b'S'[0]] : 'severity',
	message_types[b'C'[0]] : 'code',
	message_types[b'M'[0]] : 'message',
	message_types[b'D'[0]] : 'detail',
	message_types[b'H'[0]] : 'hint',
	message_types[b'W'[0]] : 'context',
	message_types[b'P'[0]] : 'position',
	message_types[b'p'[0]] : 'internal_position',
	message_types[b'q'[0]] : 'internal_query',
	message_types[b's'[0]] : 'schema',
	message_types[b't'[0]] : 'table',
	message_types[b'c'[0]] : 'column',
	message_types[b'd'[0]] : 'datatype',
	message_types[b'n'[0]] : 'constraint',
	message_types[b'F'[0]] : 'file',
	message_types[b'L'[0]] : 'line',
	message_types[b'R'[0]] : 'function',
}
del message_types

# Server encoding names that Python's codec registry does not know.
server_encodings = {
	'sql_ascii' : 'ascii',
	'unicode' : 'utf-8',
	'win866' : 'cp866',
	'win874' : 'cp874',
	'win1250' : 'cp1250',
	'win1251' : 'cp1251',
	'win1252' : 'cp1252',
	'win1253' : 'cp1253',
	'win1254' : 'cp1254',
	'win1255' : 'cp1255',
	'win1256' : 'cp1256',
	'win1257' : 'cp1257',
	'win1258' : 'cp1258',
}

def repr_data(x, limit = 80):
	data = repr(x)
	if len(data) > limit:
		# Be sure not to fill screen with noise.
		data = data[:limit - 5] + ' ...'
	return data

class TypeIO(object):
	"""
	Type I/O for one connection: the Oid to codec cache, the names and array
	types known to the connection, the client encoding, and the values that
	are sent as NULL.

	Instances are owned by the connection's actor thread.
	"""
	strio = (None, None)

	def __init__(self, encoding = 'utf-8', nulls = (None,)):
		self._cache = {}
		self.names = dict(pg_types.name_to_oid)
		self.oid_names = dict(pg_types.oid_to_name)
		self.arrays = dict(pg_types.element_to_array)
		self.elements = dict(pg_types.array_to_element)
		# type name -> (codec, opts)
		self.registered = {}
		self.nulls = tuple(nulls)
		self.set_encoding(encoding)

	def set_encoding(self, value):
		"""
		Set a new client encoding.
		"""
		self.encoding = value.lower().strip()
		ci = lookup_codecs(server_encodings.get(self.encoding, self.encoding))
		self._encode = ci.encode
		self._decode = ci.decode

	def encode(self, string_data):
		return self._encode(string_data)[0]

	def decode(self, bytes_data):
		return self._decode(bytes_data)[0]

	def is_null(self, x):
		for n in self.nulls:
			if x is n or (x.__class__ is n.__class__ and x == n):
				return True
		return False

	def type_name(self, oid):
		return self.oid_names.get(oid, str(oid))

	def resolve_type(self, spec):
		"""
		Resolve a type specification to its Oid::

			'int4', ('array', 'int4'), ('unknown_oid', 1234), 23
		"""
		if isinstance(spec, int):
			return spec
		if isinstance(spec, tuple) and len(spec) == 2:
			kind, x = spec
			if kind == 'array':
				oid = self.arrays.get(self.resolve_type(x))
				if oid is not None:
					return oid
			elif kind == 'unknown_oid':
				return int(x)
		elif isinstance(spec, str):
			oid = self.names.get(spec)
			if oid is None:
				oid = self.names.get(spec.lower())
			if oid is not None:
				return oid
		raise pg_exc.UnknownTypeError(
			"cannot resolve type %r" %(spec,),
			details = {'hint' : "Type names are resolved using the names " \
				"known to the connection; extension types need a type cache refresh."}
		)

	def identify(self, oid, name, array_oid = None):
		"""
		Record the name, and optionally the array type, of the type `oid`.
		"""
		self.names[name] = oid
		self.oid_names[oid] = name
		if array_oid:
			self.arrays[oid] = array_oid
			self.elements[array_oid] = oid
			self._cache.pop(array_oid, None)

	def install(self, oid, codec, opts = None):
		if codec.__class__ is not tuple:
			codec = codec(oid, self, opts)
		self._cache[oid] = tuple(codec)
		array_oid = self.arrays.get(oid)
		if array_oid is not None:
			# rebuilt from the new element I/O on demand
			self._cache.pop(array_oid, None)

	def register(self, type_name, codec, opts = None):
		"""
		Register `codec` for the type named `type_name`.

		When the Oid of the type is already known, the codec is installed
		immediately. Otherwise it is installed by `update_types` once the type
		cache was refreshed.
		"""
		self.registered[type_name] = (codec, opts)
		oid = self.names.get(type_name)
		if oid is not None:
			self.install(oid, codec, opts)

	def codec_entries(self, codecs):
		"""
		Normalize a codec list into ``(type_name, codec, opts)`` triples.

		Entries are type names, ``(type_name, opts)`` pairs, or full triples.
		Names without a codec argument must have a known codec.
		"""
		r = []
		for x in codecs:
			if isinstance(x, str):
				name, codec, opts = x, None, None
			elif len(x) == 2:
				(name, opts), codec = x, None
			else:
				name, codec, opts = x
			if codec is None:
				codec = resolve(name) or resolve(self.names.get(name))
				if codec is None:
					raise pg_exc.UnknownTypeError(
						"no codec available for type %r" %(name,)
					)
			r.append((name, codec, opts))
		return r

	def update_types(self, rows, entries = ()):
		"""
		Apply the rows of a pg_type lookup, ``(oid, typname, typarray)``,
		then install the registered codecs whose types were found.
		"""
		for oid, name, array_oid in rows:
			self.identify(int(oid), name, int(array_oid or 0))
		for name, codec, opts in entries:
			self.registered[name] = (codec, opts)
		for name, (codec, opts) in self.registered.items():
			oid = self.names.get(name)
			if oid is not None:
				self.install(oid, codec, opts)

	def resolve(self,
		typid : "The Oid of the type to resolve pack and unpack routines for.",
		builtins : "types.io.resolve" = resolve,
	):
		typio = self._cache.get(typid)
		if typio is None:
			typio = builtins(typid)
			if typio is not None:
				# If typio is a tuple, it's a constant pair: (pack, unpack)
				# otherwise, it's an I/O pair constructor.
				if typio.__class__ is not tuple:
					typio = typio(typid, self, None)
			elif typid in self.elements:
				element_oid = self.elements[typid]
				typio = self.array_io_factory(
					element_oid, *self.resolve(element_oid)
				)
			else:
				typio = self.strio
			self._cache[typid] = typio
		return typio

	##
	# array_io_factory - build I/O pair for ARRAYs
	##
	def array_io_factory(self,
		typoid, # array element id
		pack_element, unpack_element,
		array_pack = io_lib.array_pack,
		array_unpack = io_lib.array_unpack,
	):
		if pack_element is None or unpack_element is None:
			# Elements without binary I/O; the array goes as text.
			return self.strio

		def pack_an_array(data, is_null = self.is_null):
			dims, elements = io_lib.array_dimensions(data)
			return array_pack((
				0, # unused flags
				typoid, dims, [1] * len(dims),
				(None if is_null(x) else pack_element(x) for x in elements),
			))

		def unpack_an_array(data):
			flags, typoid, dims, lbs, elements = array_unpack(data)
			return io_lib.array_nest([
				x if x is None else unpack_element(x) for x in elements
			], dims)

		return (pack_an_array, unpack_an_array)

	def has_binary_io(self, oid):
		pack, unpack = self.resolve(oid)
		return pack is not None and unpack is not None

	def encode_parameters(self, oids, values,
		BinaryFormat = element.BinaryFormat,
		StringFormat = element.StringFormat,
	):
		"""
		Pack the parameter values for a Bind message. Returns the pair of
		argument formats and argument data.
		"""
		formats = []
		args = []
		for i, (oid, value) in enumerate(zip(oids, values)):
			pack = self.resolve(oid)[0]
			formats.append(StringFormat if pack is None else BinaryFormat)
			if self.is_null(value):
				args.append(None)
				continue
			try:
				if pack is None:
					if value.__class__ is not bytes:
						value = self.encode(
							value if value.__class__ is str else str(value)
						)
					args.append(value)
				else:
					args.append(pack(value))
			except Exception as err:
				raise pg_exc.ParameterError(
					"could not pack parameter $%d::%s for transfer" %(
						i + 1, self.type_name(oid),
					),
					details = {
						'context' : repr_data(value),
						'position' : str(i + 1),
					},
				) from err
		return formats, args

	def result_format(self, oid,
		BinaryFormat = element.BinaryFormat,
		StringFormat = element.StringFormat,
	):
		return BinaryFormat if self.resolve(oid)[1] is not None else StringFormat

	def decode_row(self, columns, row):
		"""
		Unpack a row using the formats and types of the `columns`.
		"""
		r = []
		for column, data in zip(columns, row):
			if data is None:
				r.append(None)
				continue
			try:
				if column.format == 1:
					r.append(self.resolve(column.oid)[1](data))
				else:
					r.append(self.decode(data))
			except Exception as err:
				raise pg_exc.ColumnError(
					"could not unpack column %r, %s, from wire data" %(
						column.name, self.type_name(column.oid),
					),
					details = {'context' : repr_data(data)},
				) from err
		return tuple(r)

	##
	# Used by decode_notice()
	def _decode_failsafe(self, data):
		decode = self._decode
		for k, v in data:
			try:
				yield (k, decode(v)[0])
			except UnicodeDecodeError:
				# Fallback to the bytes representation.
				yield (k, repr(v)[2:-1])

	def decode_notice(self, notice):
		if notice.__class__ is element.ClientError:
			items = notice.items()
		else:
			items = self._decode_failsafe(notice.items())
		return {
			notice_field_to_name[k] : v
			for k, v in items
			# don't include unknown messages in this list.
			if k in notice_field_to_name
		}

	def error_from_message(self, error_message, creator = None,
		errorlookup = pg_exc.ErrorLookup,
	):
		"""
		Build the exception for a protocol level error message.
		The error is returned, not raised.
		"""
		m = self.decode_notice(error_message)
		c = m.pop('code', 'XX000')
		ms = m.pop('message', '')
		source = 'CLIENT' if error_message.__class__ is element.ClientError else 'SERVER'
		return errorlookup(c)(ms, code = c, details = m, source = source, creator = creator)

	def message_from_notice(self, notice, creator = None,
		MessageType = pg_msg.Message,
		warninglookup = pg_exc.WarningLookup,
	):
		fields = self.decode_notice(notice)
		m = fields.pop('message', '')
		c = fields.pop('code', '00000')
		if fields.get('severity', '').upper() == 'WARNING':
			MessageType = warninglookup(c)
		return MessageType(m, code = c, details = fields,
			creator = creator, source = 'SERVER')
