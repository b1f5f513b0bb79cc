##
# .test.support
##
"""
A scripted server used by the test_* modules to mimic PostgreSQL.

`Backend` speaks the server side of the protocol on one end of a
`socket.socketpair()`. `PairParameters` makes a connection use the other end::

	backend = Backend()
	db = Connection(PairParameters(backend))
	db.connect()

The backend knows the statements of its `catalog` for the extended protocol,
a few commands of the simple query protocol (transaction control, COPY FROM
STDIN, NOTIFY, START_REPLICATION and the type cache lookup) and replies to
any other simple query with a completion tag. SQL containing ``FAIL`` is a
syntax error.
"""
import socket
import threading
import time

from ..protocol import element3 as e3
from ..protocol.buffer import pq_message_stream
from ..python.structlib import ulong_unpack, short_unpack, long_pack, long_unpack
from ..python.socket import SocketFactory
from ..clientparameters import Parameters
from .. import types as pg_types

def wait_for(predicate, timeout = 5.0):
	'Poll `predicate` until it is true or the timeout elapses.'
	end = time.monotonic() + timeout
	while not predicate():
		if time.monotonic() > end:
			return False
		time.sleep(0.01)
	return True

class ServerError(Exception):
	def __init__(self, code, message, severity = b'ERROR'):
		self.code = code
		self.text = message
		self.severity = severity

	def message(self):
		return e3.Error((
			(b'S', self.severity),
			(b'C', self.code),
			(b'M', self.text),
		))

def column(name, oid):
	return (name.encode('utf-8'), 0, 0, oid, 4, -1, 0)

def describe(columns, formats = ()):
	if columns is None:
		return e3.NoDataMessage
	formats = list(formats) + [e3.StringFormat] * (len(columns) - len(formats))
	return e3.TupleDescriptor([
		column(name, oid)[:6] + (1 if f == e3.BinaryFormat else 0,)
		for (name, oid), f in zip(columns, formats)
	])

def echo(backend, args):
	return ([tuple(args)], b'SELECT 1')

def series(backend, args):
	return ([(long_pack(i),) for i in range(1, 6)], b'SELECT 5')

def divide_by_zero(backend, args):
	raise ServerError(b'22012', b'division by zero')

def insert(backend, args):
	value = long_unpack(args[0])
	if value < 0:
		raise ServerError(b'23514',
			b'new row for relation "t" violates check constraint "t_i_check"')
	backend.tables.setdefault('t', []).append(value)
	return ([], b'INSERT 0 1')

class Backend(object):
	"""
	Server side of one connection, run by a thread until the client
	terminates or disconnects.
	"""
	# SQL -> (parameter oids, result columns, execute(backend, args) -> (rows, tag))
	catalog = {
		'SELECT $1::int4' : (
			(pg_types.INT4OID,), [('int4', pg_types.INT4OID)], echo,
		),
		'SELECT $1::int4, $2::text' : (
			(pg_types.INT4OID, pg_types.TEXTOID),
			[('int4', pg_types.INT4OID), ('text', pg_types.TEXTOID)],
			echo,
		),
		'SELECT i FROM generate_series(1, 5) AS g(i)' : (
			(), [('i', pg_types.INT4OID)], series,
		),
		'SELECT 1/0' : (
			(), [('?column?', pg_types.INT4OID)], divide_by_zero,
		),
		'INSERT INTO t VALUES ($1)' : (
			(pg_types.INT4OID,), None, insert,
		),
	}

	def __init__(self, pid = 4321, key = 8765, reject = None):
		self.pid = pid
		self.key = key
		self.reject = reject
		self.client, self.server = socket.socketpair()
		self.buffer = pq_message_stream()
		self.lock = threading.Lock()

		self.startup_parameters = None
		# (type, body) of every message received after the startup packet.
		self.received = []
		self.queries = []
		self.scripts = {}
		# typname -> (oid, array oid) answered to pg_type lookups.
		self.types = {}
		self.tables = {}
		self.prepared = {}
		self.portals = {}
		self.xact = b'I'
		self.failed = False
		self.copying = None
		self.copied = []
		self.streaming = False
		self.replication_script = []
		self.status_updates = []
		self.cancel_requests = []
		self._cancel_threads = []
		self.closed = False

		self.thread = threading.Thread(target = self.run, name = 'fake-backend')
		self.thread.daemon = True
		self.thread.start()

	def join(self, timeout = 5.0):
		self.thread.join(timeout)
		for t in self._cancel_threads:
			t.join(timeout)

	def mark(self):
		return len(self.received)

	def types_since(self, mark):
		return [x[0] for x in self.received[mark:]]

	def send(self, *messages):
		data = b''.join([
			x.bytes() if x.__class__ is not bytes else e3.CopyData(x).bytes()
			for x in messages
		])
		with self.lock:
			self.server.sendall(data)

	def recv_exactly(self, n):
		data = b''
		while len(data) < n:
			chunk = self.server.recv(n - len(data))
			if not chunk:
				raise EOFError("client disconnected during startup")
			data += chunk
		return data

	def next_message(self):
		while not self.buffer.has_message():
			try:
				data = self.server.recv(8192)
			except OSError:
				return None
			if not data:
				return None
			self.buffer.write(data)
		return self.buffer.next_message()

	def run(self):
		try:
			if not self.startup():
				return
			while not self.closed:
				msg = self.next_message()
				if msg is None:
					break
				self.received.append(msg)
				self.dispatch(*msg)
		finally:
			self.server.close()

	def startup(self):
		while True:
			size = ulong_unpack(self.recv_exactly(4))
			body = self.recv_exactly(size - 4)
			if body == e3.NegotiateSSLCode:
				self.server.sendall(b'N')
				continue
			self.startup_parameters = e3.Startup.parse(body)
			break
		if self.reject is not None:
			self.send(self.reject.message())
			return False
		self.send(
			e3.Authentication(e3.AuthRequest_OK, b''),
			e3.ShowOption(b'client_encoding', b'UTF8'),
			e3.ShowOption(b'server_version', b'16.4'),
			e3.KillInformation(self.pid, self.key),
			e3.Ready(b'I'),
		)
		return True

	##
	# Cancel requests arrive on their own connection.
	def accept_cancel(self):
		client, server = socket.socketpair()
		t = threading.Thread(target = self.read_cancel, args = (server,))
		t.daemon = True
		t.start()
		self._cancel_threads.append(t)
		return client

	def read_cancel(self, server):
		with server:
			data = b''
			while len(data) < 16:
				chunk = server.recv(16 - len(data))
				if not chunk:
					break
				data += chunk
		if len(data) == 16:
			req = e3.CancelRequest.parse(data[4:])
			self.cancel_requests.append((req.pid, req.key))

	##
	# Message processing.
	def dispatch(self, typ, data):
		if self.copying is not None:
			self.copy_in(typ, data)
			return
		if typ in (e3.CopyData.type, e3.CopyDone.type, e3.CopyFail.type):
			if self.streaming and typ == e3.CopyData.type:
				self.status_updates.append(e3.StandbyStatusUpdate.parse(data))
			# Dropped after a failed COPY.
			return
		if typ == e3.Disconnect.type:
			self.closed = True
			return
		if self.failed and typ != e3.Synchronize.type:
			# discard until Sync
			return

		handler = {
			e3.Query.type : self.do_query,
			e3.Parse.type : self.do_parse,
			e3.Bind.type : self.do_bind,
			e3.Describe.type : self.do_describe,
			e3.Execute.type : self.do_execute,
			e3.Close.type : self.do_close,
			e3.Synchronize.type : self.do_sync,
			e3.Flush.type : self.do_flush,
		}[typ]
		try:
			handler(data)
		except ServerError as err:
			self.send(err.message())
			if err.severity != b'ERROR':
				self.closed = True
				return
			if self.xact == b'T':
				self.xact = b'E'
			if typ == e3.Query.type:
				self.send(e3.Ready(self.xact))
			else:
				self.failed = True

	def do_sync(self, data):
		self.failed = False
		self.send(e3.Ready(self.xact))

	def do_flush(self, data):
		pass

	def do_parse(self, data):
		msg = e3.Parse.parse(data)
		sql = msg.statement.decode('utf-8')
		if sql not in self.catalog:
			raise ServerError(b'42601', b'syntax error at or near "FAIL"')
		if msg.name and msg.name in self.prepared:
			raise ServerError(b'42P05',
				b'prepared statement "' + msg.name + b'" already exists')
		self.prepared[msg.name] = sql
		self.send(e3.ParseCompleteMessage)

	def statement(self, name):
		sql = self.prepared.get(name)
		if sql is None:
			raise ServerError(b'26000',
				b'prepared statement "' + name + b'" does not exist')
		return sql

	def do_describe(self, data):
		if data[0:1] == e3.DescribeStatement.subtype:
			sql = self.statement(e3.DescribeStatement.parse(data).data)
			oids, columns, run = self.catalog[sql]
			self.send(e3.AttributeTypes(oids), describe(columns))
		else:
			name = e3.DescribePortal.parse(data).data
			portal = self.portals.get(name)
			if portal is None:
				raise ServerError(b'34000', b'portal "' + name + b'" does not exist')
			columns = self.catalog[portal['sql']][1]
			self.send(describe(columns, portal['formats']))

	def do_bind(self, data):
		msg = e3.Bind.parse(data)
		sql = self.statement(msg.statement)
		oids = self.catalog[sql][0]
		if len(msg.arguments) != len(oids):
			raise ServerError(b'08P01',
				b'bind message has the wrong number of parameters')
		self.portals[msg.name] = {
			'sql' : sql,
			'args' : list(msg.arguments),
			'formats' : list(msg.rformats),
			'pending' : None,
		}
		self.send(e3.BindCompleteMessage)

	def do_execute(self, data):
		msg = e3.Execute.parse(data)
		portal = self.portals.get(msg.name)
		if portal is None:
			raise ServerError(b'34000', b'portal "' + msg.name + b'" does not exist')
		if portal['pending'] is None:
			run = self.catalog[portal['sql']][2]
			rows, tag = run(self, portal['args'])
		else:
			rows = portal['pending']
			tag = ('SELECT %d' %(len(rows),)).encode('ascii')
		if msg.max and len(rows) > msg.max:
			portal['pending'] = rows[msg.max:]
			self.send(*([e3.Tuple(x) for x in rows[:msg.max]] + [e3.SuspensionMessage]))
			return
		portal['pending'] = []
		self.send(*([e3.Tuple(x) for x in rows] + [e3.Complete(tag)]))

	def do_close(self, data):
		if data[0:1] == e3.CloseStatement.subtype:
			self.prepared.pop(e3.CloseStatement.parse(data).data, None)
		else:
			self.portals.pop(e3.ClosePortal.parse(data).data, None)
		self.send(e3.CloseCompleteMessage)

	##
	# Simple query protocol.
	def do_query(self, data):
		text = e3.Query.parse(data).data.decode('utf-8')
		out = []
		statements = [x.strip() for x in text.split(';') if x.strip()]
		if not statements:
			out.append(e3.NullMessage)
		for sql in statements:
			self.queries.append(sql)
			if 'FAIL' in sql:
				self.send(*out)
				raise ServerError(b'42601', b'syntax error at or near "FAIL"')
			if self.xact == b'E' and sql not in ('COMMIT', 'ROLLBACK'):
				self.send(*out)
				raise ServerError(b'25P02', b'current transaction is aborted, ' \
					b'commands ignored until end of transaction block')
			word = sql.split(None, 1)[0].upper()
			if sql in self.scripts:
				out.extend(self.scripts[sql])
			elif word == 'BEGIN':
				self.xact = b'T'
				out.append(e3.Complete(b'BEGIN'))
			elif word == 'COMMIT':
				out.append(e3.Complete(b'ROLLBACK' if self.xact == b'E' else b'COMMIT'))
				self.xact = b'I'
			elif word == 'ROLLBACK':
				self.xact = b'I'
				out.append(e3.Complete(b'ROLLBACK'))
			elif word == 'NOTIFY':
				channel = sql.split(None, 1)[1].encode('utf-8')
				out.append(e3.Notify(self.pid, channel, b''))
				out.append(e3.Complete(b'NOTIFY'))
			elif sql.startswith('SELECT pg_terminate_backend'):
				self.send(*out)
				raise ServerError(b'57P01',
					b'terminating connection due to administrator command',
					severity = b'FATAL')
			elif sql.startswith('SELECT oid, typname, typarray FROM pg_catalog.pg_type'):
				out.extend(self.pg_type(sql))
			elif word == 'COPY':
				self.send(*out)
				self.copy_start(sql)
				return
			elif word == 'START_REPLICATION':
				self.send(*out)
				self.stream_start()
				return
			else:
				out.append(e3.Complete(word.encode('ascii')))
		out.append(e3.Ready(self.xact))
		self.send(*out)

	def pg_type(self, sql):
		rows = [
			(str(oid).encode('ascii'), name.encode('ascii'), str(array_oid).encode('ascii'))
			for name, (oid, array_oid) in sorted(self.types.items())
			if "'" + name + "'" in sql
		]
		return [
			e3.TupleDescriptor([
				(b'oid', 1247, 0, pg_types.OIDOID, 4, -1, 0),
				(b'typname', 1247, 1, pg_types.NAMEOID, 64, -1, 0),
				(b'typarray', 1247, 2, pg_types.OIDOID, 4, -1, 0),
			]),
		] + [e3.Tuple(x) for x in rows] + [
			e3.Complete(('SELECT %d' %(len(rows),)).encode('ascii')),
		]

	##
	# COPY FROM STDIN
	def copy_start(self, sql):
		binary = 'BINARY' in sql.upper()
		if '(' in sql:
			ncols = len(sql[sql.index('(') + 1:sql.index(')')].split(','))
		else:
			ncols = 1
		fmt = 1 if binary else 0
		self.copying = {'binary' : binary, 'columns' : ncols, 'data' : []}
		self.send(e3.CopyFromBegin(fmt, [fmt] * ncols))

	def copy_in(self, typ, data):
		copying = self.copying
		try:
			if typ == e3.CopyData.type:
				if not copying['binary']:
					for line in data.splitlines():
						if len(line.split(b'\t')) != copying['columns']:
							raise ServerError(b'22P04',
								b'missing data for column "t"')
				copying['data'].append(data)
			elif typ == e3.CopyDone.type:
				data = b''.join(copying['data'])
				if copying['binary']:
					rows = self.binary_rows(data)
				else:
					rows = data.splitlines()
				self.copied.append(rows)
				self.copying = None
				self.send(
					e3.Complete(('COPY %d' %(len(rows),)).encode('ascii')),
					e3.Ready(self.xact),
				)
			elif typ == e3.CopyFail.type:
				reason = e3.CopyFail.parse(data).data
				raise ServerError(b'57014', b'COPY from stdin failed: ' + reason)
		except ServerError as err:
			self.copying = None
			if self.xact == b'T':
				self.xact = b'E'
			self.send(err.message(), e3.Ready(self.xact))

	def binary_rows(self, data):
		if data[:11] != b'PGCOPY\n\xff\r\n\x00':
			raise ServerError(b'22P04', b'COPY file signature not recognized')
		pos = 19
		rows = []
		while True:
			ncols = short_unpack(data[pos:pos+2])
			pos += 2
			if ncols == -1:
				break
			if ncols != self.copying['columns']:
				raise ServerError(b'22P04', b'row field count is wrong')
			row = []
			for i in range(ncols):
				size = long_unpack(data[pos:pos+4])
				pos += 4
				if size == -1:
					row.append(None)
					continue
				row.append(data[pos:pos+size])
				pos += size
			rows.append(tuple(row))
		return rows

	##
	# Logical replication.
	def stream_start(self):
		self.streaming = True
		self.send(e3.CopyBothBegin(0, []), *self.replication_script)

	def stream(self, *payloads):
		'Send replication messages to the client.'
		self.send(*payloads)

	def end_stream(self):
		self.streaming = False
		self.send(
			e3.CopyDoneMessage,
			e3.Complete(b'START_REPLICATION'),
			e3.Ready(self.xact),
		)

class PairFactory(SocketFactory):
	"""
	Socket factory connecting to a `Backend`. Sockets made after the first
	one are cancel request connections.
	"""
	def __init__(self, backend):
		super().__init__((socket.AF_UNIX, socket.SOCK_STREAM), 'socketpair')
		self.backend = backend
		self.used = False

	def __call__(self, timeout = None):
		if self.used:
			return self.backend.accept_cancel()
		self.used = True
		return self.backend.client

class PairParameters(Parameters):
	"""
	Connection parameters whose only address is the `backend`.
	"""
	def __init__(self, backend, **kw):
		kw.setdefault('username', 'tester')
		super().__init__(**kw)
		self.backend = backend
		self.factory = PairFactory(backend)

	def socket_factories(self):
		return [self.factory]
