##
# .types.io.stdlib_json - json and jsonb through the stdlib's json module
##
import json
from .. import JSONOID, JSONBOID

# Binary jsonb is the text form preceded by a version number.
jsonb_version = b'\x01'

def json_factory(oid, typio, opts = None):
	"""
	Build the json I/O pair. `opts` may provide ``dumps`` and ``loads``
	callables to replace `json.dumps` and `json.loads`.
	"""
	opts = opts or {}
	dumps = opts.get('dumps', json.dumps)
	loads = opts.get('loads', json.loads)

	def pack_json(x, encode = typio.encode):
		return encode(dumps(x))

	def unpack_json(x, decode = typio.decode):
		return loads(decode(x))
	return (pack_json, unpack_json)

def jsonb_factory(oid, typio, opts = None):
	pack_json, unpack_json = json_factory(oid, typio, opts)

	def pack_jsonb(x):
		return jsonb_version + pack_json(x)

	def unpack_jsonb(x):
		if x[:1] != jsonb_version:
			raise ValueError("unsupported jsonb version %r" %(x[:1],))
		return unpack_json(x[1:])
	return (pack_jsonb, unpack_jsonb)

oid_to_io = {
	JSONOID : json_factory,
	JSONBOID : jsonb_factory,
}
