##
# .types - PostgreSQL type identifiers
##
"""
PostgreSQL types and identifiers.

Only the types that have a fixed Oid in every installation are listed here.
Types provided by extensions, like ``hstore``, are looked up in ``pg_type``
after the connection is established.
"""
InvalidOid = 0

RECORDOID = 2249
BOOLOID = 16
CHAROID = 18
NAMEOID = 19
TEXTOID = 25
BYTEAOID = 17
BPCHAROID = 1042
VARCHAROID = 1043
CSTRINGOID = 2275
UNKNOWNOID = 705
UUIDOID = 2950

JSONOID = 114
JSONBOID = 3802
XMLOID = 142

DATEOID = 1082
TIMEOID = 1083
TIMESTAMPOID = 1114
TIMESTAMPTZOID = 1184
INTERVALOID = 1186

INT8OID = 20
INT2OID = 21
INT4OID = 23
OIDOID = 26
FLOAT4OID = 700
FLOAT8OID = 701
NUMERICOID = 1700

REGTYPEOID = 2206
REGCLASSOID = 2205
VOIDOID = 2278

#: Mapping of type Oid to name.
oid_to_name = {
	RECORDOID : 'record',
	BOOLOID : 'bool',
	CHAROID : 'char',
	NAMEOID : 'name',
	TEXTOID : 'text',
	BYTEAOID : 'bytea',
	BPCHAROID : 'bpchar',
	VARCHAROID : 'varchar',
	CSTRINGOID : 'cstring',
	UNKNOWNOID : 'unknown',
	UUIDOID : 'uuid',

	JSONOID : 'json',
	JSONBOID : 'jsonb',
	XMLOID : 'xml',

	DATEOID : 'date',
	TIMEOID : 'time',
	TIMESTAMPOID : 'timestamp',
	TIMESTAMPTZOID : 'timestamptz',
	INTERVALOID : 'interval',

	INT8OID : 'int8',
	INT2OID : 'int2',
	INT4OID : 'int4',
	OIDOID : 'oid',
	FLOAT4OID : 'float4',
	FLOAT8OID : 'float8',
	NUMERICOID : 'numeric',

	REGTYPEOID : 'regtype',
	REGCLASSOID : 'regclass',
	VOIDOID : 'void',
}

name_to_oid = dict(
	[(v,k) for k,v in oid_to_name.items()]
)

# SQL spellings accepted wherever a type name is.
name_to_oid.update({
	'boolean' : BOOLOID,
	'smallint' : INT2OID,
	'integer' : INT4OID,
	'int' : INT4OID,
	'bigint' : INT8OID,
	'real' : FLOAT4OID,
	'double precision' : FLOAT8OID,
	'character varying' : VARCHAROID,
	'character' : BPCHAROID,
	'timestamp without time zone' : TIMESTAMPOID,
	'timestamp with time zone' : TIMESTAMPTZOID,
})

#: Mapping of element type Oid to the Oid of its array type.
element_to_array = {
	BOOLOID : 1000,
	BYTEAOID : 1001,
	CHAROID : 1002,
	NAMEOID : 1003,
	INT2OID : 1005,
	INT4OID : 1007,
	TEXTOID : 1009,
	BPCHAROID : 1014,
	VARCHAROID : 1015,
	INT8OID : 1016,
	FLOAT4OID : 1021,
	FLOAT8OID : 1022,
	OIDOID : 1028,
	TIMESTAMPOID : 1115,
	DATEOID : 1182,
	TIMESTAMPTZOID : 1185,
	INTERVALOID : 1187,
	NUMERICOID : 1231,
	UUIDOID : 2951,
	JSONOID : 199,
	JSONBOID : 3807,
}

array_to_element = dict(
	[(v,k) for k,v in element_to_array.items()]
)
