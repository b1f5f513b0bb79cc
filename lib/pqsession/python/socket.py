##
# .python.socket - additional tools for working with sockets
##
import socket
import errno
import ssl

__all__ = ['SocketFactory', 'socket_factories']

class SocketFactory(object):
	"""
	Object used to create a socket and connect it.

	This is, more or less, a specialized partial() for socket creation.

	Additionally, it provides methods and attributes for abstracting
	exception management on socket operation.
	"""

	timeout_exception = socket.timeout
	fatal_exception = socket.error
	try_again_exception = socket.error

	def timed_out(self, err) -> bool:
		return isinstance(err, self.timeout_exception)

	@staticmethod
	def try_again(err, codes = (errno.EAGAIN, errno.EINTR, errno.EWOULDBLOCK)) -> bool:
		"""
		Does the error indicate that the operation should be tried again?

		More importantly, the connection is *not* dead.
		"""
		code = getattr(err, 'errno', None)
		if code is None:
			return False
		return code in codes

	@classmethod
	def fatal_exception_message(typ, err) -> (str, None):
		"""
		If the exception was fatal to the connection,
		what message should be given to the user?
		"""
		if typ.try_again(err) or isinstance(err, typ.timeout_exception):
			return None
		return getattr(err, 'strerror', None) or str(err) or '<strerror not present>'

	def context(self) -> ssl.SSLContext:
		"""
		Build the SSL context from the `socket_secure` keywords:
		``cafile``, ``capath``, ``certfile``, ``keyfile``, ``password``,
		``check_hostname``, ``verify_mode`` and ``ciphers``.
		"""
		opts = dict(self.socket_secure or ())
		ctx = ssl.create_default_context(
			cafile = opts.get('cafile'), capath = opts.get('capath'),
		)
		# Without explicit verification settings, encryption is all that is asked.
		ctx.check_hostname = bool(opts.get('check_hostname', False))
		ctx.verify_mode = opts.get('verify_mode', ssl.CERT_NONE)
		if opts.get('certfile') is not None:
			ctx.load_cert_chain(
				opts['certfile'], opts.get('keyfile'), opts.get('password')
			)
		if opts.get('ciphers') is not None:
			ctx.set_ciphers(opts['ciphers'])
		return ctx

	def secure(self, sock : socket.socket) -> ssl.SSLSocket:
		"secure a socket with SSL"
		host = None
		if isinstance(self.socket_connect, tuple):
			host = self.socket_connect[0]
		return self.context().wrap_socket(sock, server_hostname = host)

	def __call__(self, timeout = None):
		s = socket.socket(*self.socket_create)
		try:
			for level, option, value in self.socket_options:
				s.setsockopt(level, option, value)
			s.settimeout(float(timeout) if timeout is not None else None)
			s.connect(self.socket_connect)
			s.settimeout(None)
		except Exception:
			s.close()
			raise
		return s

	def __init__(self,
		socket_create : "positional parameters given to socket.socket()",
		socket_connect : "parameter given to socket.connect()",
		socket_secure : "keywords used to build the ssl.SSLContext" = None,
		socket_options : "(level, option, value) triples for setsockopt" = (),
	):
		self.socket_create = socket_create
		self.socket_connect = socket_connect
		self.socket_secure = socket_secure
		self.socket_options = tuple(socket_options)

	def __str__(self):
		return 'socket' + repr(self.socket_connect)

def socket_factories(
	host : "host name, address or unix socket directory",
	port : "server port",
	ssl_opts : "keywords used to build the ssl.SSLContext" = None,
	tcp_opts : "(level, option, value) triples for setsockopt" = (),
) -> [SocketFactory]:
	"""
	Resolve `host` and `port` into the list of socket factories to try in
	order. A host starting with a slash is the directory of the server's unix
	socket.
	"""
	if host.startswith('/'):
		path = host.rstrip('/') + '/.s.PGSQL.' + str(port)
		return [SocketFactory((socket.AF_UNIX, socket.SOCK_STREAM), path, ssl_opts)]
	return [
		SocketFactory((family, socktype, proto), addr, ssl_opts, tcp_opts)
		for family, socktype, proto, canon, addr in socket.getaddrinfo(
			host, port, 0, socket.SOCK_STREAM
		)
	]
