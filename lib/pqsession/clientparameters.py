##
# .clientparameters
##
"""
Collect client connection parameters from various sources.

The connection options are held by a single structure, `Parameters`, with
named fields and documented defaults. It can be built from keywords, from a
mapping, or from a sequence of key-value pairs; all three forms have the same
meaning::

	>>> p = Parameters(host = 'db', username = 'app', codecs = [])
	>>> p = Parameters.from_options({'host' : 'db', 'username' : 'app'})
	>>> p = Parameters.from_options([('host', 'db'), ('username', 'app')])

`collect` layers the user relative defaults and the ``PG*`` environment
variables under explicitly given options.
"""
import os
import ssl as ssl_module
from getpass import getuser

from .exceptions import DriverError
from .python.socket import socket_factories

class ClientParameterError(DriverError):
	code = '-*000'
	source = 'CLIENT'

default_host = 'localhost'
default_port = 5432
default_timeout = 5.0

# Environment variables that require no transformation.
default_envvar_map = {
	'USER' : 'username',
	'DATABASE' : 'database',
	'HOST' : 'host',
	'PORT' : 'port',
	'PASSWORD' : 'password',
	'SSLMODE' : 'sslmode',
	'CONNECT_TIMEOUT' : 'timeout',
	'APPNAME' : 'application_name',
	'SSLCERT' : 'sslcert',
	'SSLKEY' : 'sslkey',
	'SSLROOTCERT' : 'sslrootcert',
}

# environment variables that will be in the parameters' "settings" dictionary.
default_envvar_settings_map = {
	'TZ' : 'timezone',
	'DATESTYLE' : 'datestyle',
	'CLIENTENCODING' : 'client_encoding',
	'OPTIONS' : 'options',
}

# libpq sslmode to the ssl field.
sslmode_map = {
	'disable' : False,
	'allow' : True,
	'prefer' : True,
	'require' : 'required',
	'verify-ca' : 'required',
	'verify-full' : 'required',
}

def resolve_password(password) -> bytes:
	"""
	Resolve the password source into the bytes sent to the server.

	The source may be `bytes`, a `str` (encoded as UTF-8), a callable taking
	no arguments and returning either of those, or `None`.
	"""
	if callable(password):
		password = password()
	if password is None:
		return b''
	if isinstance(password, str):
		return password.encode('utf-8')
	return bytes(password)

class Parameters(object):
	"""
	Connection options.

	 host
	  Server host name, address or unix socket directory. ``localhost``.
	 port
	  Server port. ``5432``.
	 username
	  Role to connect as. The login user.
	 password
	  `str`, `bytes`, or a callable returning either. Never shown by `repr`.
	 database
	  Database name. The server defaults it to the role name.
	 ssl
	  `False` (disabled), `True` (try TLS, continue without it) or
	  ``'required'``. ``False``.
	 ssl_opts
	  Keywords for the `ssl.SSLContext`: ``cafile``, ``certfile``,
	  ``keyfile``, ``check_hostname``, ``verify_mode``, ``ciphers``.
	 tcp_opts
	  ``(level, option, value)`` triples given to ``setsockopt``.
	 timeout
	  Connect timeout in seconds. ``5.0``.
	 application_name
	  Reported in ``pg_stat_activity``.
	 replication
	  ``'database'`` opens a logical replication connection.
	 receiver
	  Asynchronous event receiver: a callable or an object with ``put``.
	 codecs
	  Codecs whose types are looked up in the type cache after connect.
	  `None` selects the defaults; an empty list disables the lookup.
	 nulls
	  Client values bound as SQL NULL. ``(None,)``.
	 settings
	  Additional startup parameters (``search_path``, ``timezone``, ...).
	 trace
	  Callable receiving protocol trace lines.
	"""
	fields = (
		'host', 'port', 'username', 'password', 'database',
		'ssl', 'ssl_opts', 'tcp_opts', 'timeout',
		'application_name', 'replication',
		'receiver', 'codecs', 'nulls', 'settings', 'trace',
	)
	__slots__ = fields

	# Option names accepted for compatibility with libpq and other drivers.
	aliases = {
		'user' : 'username',
		'dbname' : 'database',
		'connect_timeout' : 'timeout',
		'async' : 'receiver',
	}

	def __init__(self,
		host = default_host,
		port = default_port,
		username = None,
		password = None,
		database = None,
		ssl = False,
		ssl_opts = None,
		tcp_opts = (),
		timeout = default_timeout,
		application_name = None,
		replication = None,
		receiver = None,
		codecs = None,
		nulls = (None,),
		settings = None,
		trace = None,
	):
		if ssl not in (False, True, 'required'):
			raise ClientParameterError(
				"invalid ssl mode: %r" %(ssl,),
				details = {'hint' : "Use False, True, or 'required'."},
			)
		self.host = host
		self.port = int(port)
		self.username = username or getuser()
		self.password = password
		self.database = database
		self.ssl = ssl
		self.ssl_opts = dict(ssl_opts or ())
		self.tcp_opts = tuple(tcp_opts)
		self.timeout = float(timeout) if timeout is not None else None
		self.application_name = application_name
		self.replication = replication
		self.receiver = receiver
		self.codecs = codecs
		self.nulls = tuple(nulls)
		self.settings = dict(settings or ())
		self.trace = trace

	@classmethod
	def from_options(typ, options = (), **kw):
		"""
		Build the parameters from a mapping or a sequence of key-value pairs.
		Later pairs override earlier ones; keywords override both.
		"""
		if hasattr(options, 'items'):
			options = options.items()
		d = dict(normalize(options))
		d.update(normalize(kw.items()))
		unknown = set(d) - set(typ.fields)
		if unknown:
			raise ClientParameterError(
				"unknown connection options: " + ', '.join(sorted(unknown))
			)
		return typ(**d)

	def __repr__(self):
		return '{mod}.{name}({args})'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			args = ', '.join([
				k + ' = ' + (
					"'********'" if k == 'password' and self.password is not None
					else repr(getattr(self, k))
				)
				for k in self.fields
			])
		)

	def resolve_password(self):
		return resolve_password(self.password)

	def startup(self) -> {bytes : bytes}:
		"""
		The parameters of the startup message.
		"""
		d = {}
		for k, v in self.settings.items():
			d[k] = str(v)
		d['user'] = self.username
		if self.database is not None:
			d['database'] = self.database
		if self.application_name is not None:
			d['application_name'] = self.application_name
		if self.replication is not None:
			d['replication'] = self.replication
		d.setdefault('client_encoding', 'UTF8')
		return {
			k.encode('utf-8') : v.encode('utf-8')
			for k, v in d.items()
		}

	def ssl_sequence(self):
		"""
		The `ssl` arguments to try `protocol.client3.Connection.connect`
		with, in order.
		"""
		if self.ssl is False:
			return (None,)
		if self.ssl == 'required':
			return (True,)
		# with ssl, then without.
		return (False, None)

	def socket_factories(self):
		ssl_opts = dict(self.ssl_opts)
		if self.ssl == 'required' and 'verify_mode' not in ssl_opts \
		and ssl_opts.get('cafile') is not None:
			ssl_opts['verify_mode'] = ssl_module.CERT_REQUIRED
		return socket_factories(
			self.host, self.port, ssl_opts = ssl_opts, tcp_opts = self.tcp_opts
		)

def normalize_parameter(kv):
	"""
	Translate a parameter into standard form.
	"""
	(k, v) = kv
	k = Parameters.aliases.get(k, k)
	if k == 'sslmode':
		k = 'ssl'
		v = sslmode_map[v.lower()]
	elif k == 'ssl' and v == 'require':
		v = 'required'
	elif k in ('port', ) and isinstance(v, str):
		v = int(v)
	elif k == 'timeout' and isinstance(v, str):
		v = float(v)
	return (k, v)

def normalize(iter):
	"""
	Build the parameter dictionary from key-value pairs. Keys that are tuples
	are key paths into sub-dictionaries like ``('settings', 'timezone')``.
	"""
	rd = {}
	for (k, v) in iter:
		if isinstance(k, tuple):
			if len(k) > 1:
				sd = rd
				for sk in k[:-1]:
					sd = sd.setdefault(sk, {})
				sd[k[-1]] = v
				continue
			k = k[0]
		k, v = normalize_parameter((k, v))
		if k == 'settings' and isinstance(rd.get(k), dict):
			rd[k].update(v)
		else:
			rd[k] = v
	return rd

def defaults(environ = os.environ):
	"""
	Produce the defaults based on the existing configuration.
	"""
	yield ('username', getuser())
	yield ('host', default_host)
	yield ('port', default_port)
	yield ('timeout', default_timeout)

def envvars(environ = os.environ, modifier : "environment variable key modifier" = 'PG'.__add__):
	"""
	Produce parameters from the given environment variables.

		PGUSER -> username
		PGDATABASE -> database
		PGHOST -> host
		PGHOSTADDR -> host (overrides PGHOST)
		PGPORT -> port
		PGPASSWORD -> password
		PGSSLMODE -> ssl
		PGCONNECT_TIMEOUT -> timeout
		PGAPPNAME -> application_name
		PGSSLCERT, PGSSLKEY, PGSSLROOTCERT -> ssl_opts

		PGTZ -> settings['timezone']
		PGDATESTYLE -> settings['datestyle']
		PGCLIENTENCODING -> settings['client_encoding']
		PGOPTIONS -> settings['options']
	"""
	ssl_opts = {}
	for k, v in default_envvar_map.items():
		k = modifier(k)
		if k not in environ:
			continue
		if v == 'sslcert':
			ssl_opts['certfile'] = environ[k]
		elif v == 'sslkey':
			ssl_opts['keyfile'] = environ[k]
		elif v == 'sslrootcert':
			ssl_opts['cafile'] = environ[k]
		else:
			yield (v, environ[k])
	if ssl_opts:
		yield ('ssl_opts', ssl_opts)

	hostaddr = modifier('HOSTADDR')
	if hostaddr in environ:
		yield ('host', environ[hostaddr])

	for k, v in default_envvar_settings_map.items():
		k = modifier(k)
		if k in environ:
			yield (('settings', v), environ[k])

def collect(
	parameters : "explicit options(applied after defaults and environment)" = (),
	no_defaults : "Don't build-out defaults like 'username' from getpass.getuser()" = False,
	environ : "environment variables to use, `None` to disable" = os.environ,
	environ_prefix : "prefix to use for collecting environment variables" = 'PG',
	**kw
) -> Parameters:
	"""
	Build the `Parameters` for a connection from the defaults, the
	environment, and the explicit options.
	"""
	if hasattr(parameters, 'items'):
		parameters = parameters.items()
	pairs = []
	if not no_defaults:
		pairs.extend(defaults(environ = environ))
	if environ is not None:
		pairs.extend(envvars(
			environ = environ,
			modifier = environ_prefix.__add__
		))
	pairs.extend(parameters)
	pairs.extend(kw.items())
	return Parameters.from_options(pairs)
