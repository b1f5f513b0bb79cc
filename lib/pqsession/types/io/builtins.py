##
# .types.io.builtins - I/O routines for the core scalar types
##
from .. import \
	INT2OID, INT4OID, INT8OID, OIDOID, \
	BOOLOID, BYTEAOID, CHAROID, \
	FLOAT4OID, FLOAT8OID, \
	TEXTOID, BPCHAROID, NAMEOID, VARCHAROID, UNKNOWNOID
from . import lib

bool_pack = {True:b'\x01', False:b'\x00'}.__getitem__
bool_unpack = {b'\x01':True, b'\x00':False}.__getitem__

int2_pack, int2_unpack = lib.short_pack, lib.short_unpack
int4_pack, int4_unpack = lib.long_pack, lib.long_unpack
int8_pack, int8_unpack = lib.longlong_pack, lib.longlong_unpack

bytea_pack = bytes
bytea_unpack = bytes
char_pack = bytes
char_unpack = bytes

def text_factory(oid, typio, opts = None):
	'Character strings travel in the client encoding.'
	return (typio.encode, typio.decode)

oid_to_io = {
	BOOLOID : (bool_pack, bool_unpack),

	BYTEAOID : (bytea_pack, bytea_unpack),
	CHAROID : (char_pack, char_unpack),

	INT2OID : (int2_pack, int2_unpack),
	INT4OID : (int4_pack, int4_unpack),
	INT8OID : (int8_pack, int8_unpack),
	OIDOID : (lib.oid_pack, lib.oid_unpack),

	FLOAT4OID : (lib.float_pack, lib.float_unpack),
	FLOAT8OID : (lib.double_pack, lib.double_unpack),

	TEXTOID : text_factory,
	VARCHAROID : text_factory,
	BPCHAROID : text_factory,
	NAMEOID : text_factory,
	UNKNOWNOID : text_factory,
}
