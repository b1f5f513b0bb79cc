##
# .driver.pq3 - session interface to PostgreSQL using PQ v3.0.
##
"""
The session interface.

`Connection` sequences the extended query protocol on top of the connection
actor, `pqsession.driver.sock.Sock`. Every operation returns an `Ok` or an
`Err`::

	>>> db = Connection(host = 'localhost', username = 'app')
	>>> db.connect()
	>>> r = db.equery("SELECT $1::int", (42,))
	>>> r.value.rows
	[(42,)]

When Parse, Bind, Describe or Close fail with a query error, a Sync is sent
before the error is returned, so the next pipeline starts from a clean state.
Execute does not synchronize on its own; the caller decides when to Sync.

Composite operations (`equery`, `execute_batch`, `with_transaction`, ...) hold
the connection's lock, so commands of other threads are not interleaved with
them.
"""
import threading
from itertools import count

from .. import exceptions as pg_exc
from .. import api as pg_api
from .. import clientparameters
from ..result import Ok, Err
from .sock import Sock

__all__ = ['Connection', 'StatementCache', 'Rollback']

class Rollback(object):
	"""
	The transaction of `Connection.with_transaction` was rolled back.

	 reason
	  The exception raised by the work, the error of the `Err` it returned,
	  or the error of the COMMIT.
	 rollback_error
	  The error of the ROLLBACK itself, if it failed.
	"""
	__slots__ = ('reason', 'rollback_error')

	def __init__(self, reason, rollback_error = None):
		self.reason = reason
		self.rollback_error = rollback_error

	def __repr__(self):
		return '{mod}.{name}({reason!r})'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			reason = self.reason,
		)

	def __eq__(self, ob):
		return isinstance(ob, Rollback) and self.reason is ob.reason

	def __hash__(self):
		return hash((Rollback, id(self.reason)))

class StatementCache(object):
	"""
	Named prepared statements keyed by their SQL text and parameter types.

	Cached statements are named with the `prefix` and a counter. They remain
	prepared on the server until evicted or until the connection is closed.
	"""
	def __init__(self, connection, prefix = 'pqs_'):
		self.connection = connection
		self.prefix = prefix
		self._statements = {}
		self._ids = count(1)

	def __len__(self):
		return len(self._statements)

	def __contains__(self, sql):
		return any(k[0] == sql for k in self._statements)

	def get(self, sql, types = ()):
		"""
		The cached statement for `sql`, prepared on first use.
		"""
		key = (sql, tuple(types))
		stmt = self._statements.get(key)
		if stmt is not None:
			return Ok(stmt)
		r = self.connection.parse(sql, types, self.prefix + str(next(self._ids)))
		if r.is_ok():
			self._statements[key] = r.value
		return r

	def resolve(self, sql, name = None, types = ()):
		"""
		Resolve `sql` and `name` into a statement:

		 `None`
		  A cached statement.
		 ``''``
		  The unnamed statement; it is replaced by the next unnamed Parse.
		 Any other name
		  A named statement that is not cached.
		"""
		if name is None:
			return self.get(sql, types)
		return self.connection.parse(sql, types, name)

	def reset(self):
		'Forget every statement; used when the connection is closed.'
		self._statements.clear()

	def forget(self, name):
		'Drop the statement named `name` from the cache without closing it.'
		for k, v in list(self._statements.items()):
			if v.name == name:
				del self._statements[k]

	def evict(self, sql, types = ()):
		"""
		Close the cached statement for `sql` and remove it from the cache.
		"""
		stmt = self._statements.pop((sql, tuple(types)), None)
		if stmt is None:
			return Ok(None)
		return self.connection.close(stmt)

	def clear(self):
		"""
		Close every cached statement. The first error ends the clear.
		"""
		for key in list(self._statements):
			stmt = self._statements.pop(key)
			r = self.connection.close(stmt)
			if r.is_err():
				return r
		return Ok(None)

def is_client_error(err):
	return not isinstance(err, (pg_exc.QueryError, pg_exc.ConnectionError))

class Connection(object):
	"""
	A session with a PostgreSQL server.

	Created from `pqsession.clientparameters.Parameters` or from the keywords
	of `Parameters`; `connect` establishes it.
	"""
	Rollback = Rollback

	def __init__(self, parameters = None, **kw):
		if parameters is None:
			parameters = clientparameters.Parameters.from_options(kw)
		elif kw:
			raise TypeError("cannot give both parameters and keywords")
		self.parameters = parameters
		self._lock = threading.RLock()
		self.sock = Sock(parameters, self)
		self.statements = StatementCache(self)

	def __repr__(self):
		return '<{mod}.{name} {host}:{port} {state}>'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			host = self.parameters.host,
			port = self.parameters.port,
			state = self.sock.state,
		)

	def __enter__(self):
		return self

	def __exit__(self, typ, val, tb):
		self.close()

	def _command(self, kind, *args, timeout = None):
		return self.sock.sync_command(kind, *args, timeout = timeout)

	def _sync_on_error(self, r):
		"""
		Send a Sync when `r` is a query error of a Flush terminated command.
		"""
		if r.is_err() and isinstance(r.error, pg_exc.QueryError):
			s = self._command('sync')
			if s.is_err():
				s.error.__context__ = r.error
				return s
		return r

	def _sync_after_client_error(self, r):
		"""
		A client side failure while the server waits for the rest of a
		pipeline: close the pipeline.
		"""
		if r.is_err() and is_client_error(r.error):
			s = self._command('sync')
			if s.is_err():
				s.error.__context__ = r.error
				return s
		return r

	@property
	def state(self):
		return self.sock.state

	@property
	def closed(self):
		return self.sock.closed or self.sock.broken is not None

	@property
	def typio(self):
		return self.sock.typio

	def connect(self):
		'Establish the connection to the server.'
		with self._lock:
			r = self._command('connect')
			if r.is_err() and (self.sock.pq is None or self.sock.closed):
				# The actor exits after a failed connect.
				self.sock.join()
		if r.is_err():
			return r
		return Ok(self)

	def close(self, kind = None, name = None):
		"""
		Without arguments, close the connection and stop its actor. Otherwise
		close a statement or a portal, see `close_object`.
		"""
		if kind is not None:
			return self.close_object(kind, name)
		with self._lock:
			r = self.sock.sync_command('terminate')
			self.sock.join()
		self.statements.reset()
		if r.is_err() and isinstance(r.error, pg_exc.ConnectionDoesNotExistError):
			# already closed
			return Ok(None)
		return r

	def cancel(self, timeout = None):
		"""
		Ask the server to cancel the command in progress. This does not wait
		for the connection's lock.
		"""
		return self.sock.cancel(timeout = timeout)

	def get_parameter(self, name):
		'The value of the server parameter `name` reported by the server.'
		return self.sock.server_parameters.get(name)

	def get_cmd_status(self):
		"""
		The status of the last completed command: ``(command, count)`` for
		commands with a row count, the command alone otherwise.
		"""
		return self.sock.cmd_status

	def set_notice_receiver(self, receiver):
		"""
		Set the receiver of the asynchronous events: a callable or an object
		with a ``put`` method. `None` sends notices to the message hook and
		drops notifications.
		"""
		self.sock.receiver = receiver

	##
	# Extended query protocol.
	def parse(self, sql, types = (), name = ''):
		"""
		Prepare `sql` as the statement `name`. `types` are optional
		parameter type specifications.
		"""
		with self._lock:
			return self._sync_on_error(self._command('parse', sql, tuple(types), name))

	def prepare(self, sql, name = None, types = ()):
		'Resolve `sql` using the statement cache.'
		with self._lock:
			return self.statements.resolve(sql, name, types)

	def bind(self, statement, parameters = (), portal = ''):
		with self._lock:
			return self._sync_on_error(
				self._command('bind', statement, tuple(parameters), portal)
			)

	def describe(self, kind, name = None):
		"""
		Describe a statement or a portal::

			db.describe(statement)
			db.describe('statement', 'name')
			db.describe('portal', '')

		Statements are described as `pqsession.api.Statement`, portals as
		their list of columns.
		"""
		if isinstance(kind, pg_api.Statement):
			kind, name = 'statement', kind.name
		if kind == 'statement':
			command = 'describe_statement'
		elif kind == 'portal':
			command = 'describe_portal'
		else:
			return Err(pg_exc.OperationError(
				"cannot describe %r; use 'statement' or 'portal'" %(kind,),
				creator = self,
			))
		with self._lock:
			return self._sync_on_error(self._command(command, name or ''))

	def execute(self, statement, portal = '', max_rows = 0):
		"""
		Execute the portal. The `statement` provides the result columns.
		"""
		with self._lock:
			return self._command('execute', statement, portal, max_rows)

	def close_statement(self, name):
		return self.close_object('statement', name)

	def close_portal(self, name):
		return self.close_object('portal', name)

	def close_object(self, kind, name = None):
		"""
		Close a statement or a portal::

			db.close_object(statement)
			db.close_object('portal', '')
		"""
		if isinstance(kind, pg_api.Statement):
			kind, name = 'statement', kind.name
		with self._lock:
			r = self._sync_on_error(self._command('close', kind, name or ''))
		if r.is_ok() and kind == 'statement':
			self.statements.forget(name)
		return r

	def sync(self):
		with self._lock:
			return self._command('sync')

	def equery(self, sql, parameters = (), name = '', types = ()):
		"""
		Parse `sql`, then Bind, Execute, Close the portal and Sync.
		"""
		with self._lock:
			r = self.parse(sql, types, name)
			if r.is_err():
				return r
			r = self._command('extended_query', r.value, tuple(parameters))
			return self._sync_after_client_error(r)

	def prepared_query(self, statement, parameters = ()):
		"""
		Run a prepared statement. A statement name is described first.
		"""
		with self._lock:
			pending = False
			if not isinstance(statement, pg_api.Statement):
				r = self.describe('statement', statement)
				if r.is_err():
					return r
				statement = r.value
				pending = True
			r = self._command('prepared_query', statement, tuple(parameters))
			if pending:
				r = self._sync_after_client_error(r)
			return r

	def squery(self, sql):
		"""
		Run `sql` with the simple query protocol. Values are returned as text.
		"""
		with self._lock:
			return self._command('simple_query', sql)

	def execute_batch(self, statement, batch = None):
		"""
		Pipeline the executions of a batch before a single Sync::

			db.execute_batch(statement, [params1, params2, ...])
			db.execute_batch("INSERT ...", [params1, params2, ...])
			db.execute_batch([(statement1, params1), ("UPDATE ...", params2)])

		With a statement, the result is ``Ok((columns, results))``; with pairs
		it is ``Ok(results)``. Results are `Ok(Reply)` or `Err` in input order;
		when an item fails, the results end with its `Err`.
		"""
		with self._lock:
			if batch is None:
				items = []
				prepared = len(self.statements)
				for stmt, parameters in statement:
					if not isinstance(stmt, pg_api.Statement):
						r = self.statements.get(stmt)
						if r.is_err():
							return r
						stmt = r.value
					items.append((stmt, tuple(parameters)))
				r = self._command('batch', items)
				if len(self.statements) != prepared:
					# Parse ended with a Flush.
					r = self._sync_after_client_error(r)
				return r

			pending = False
			if not isinstance(statement, pg_api.Statement):
				r = self.parse(statement)
				if r.is_err():
					return r
				statement = r.value
				pending = True
			items = [(statement, tuple(x)) for x in batch]
			r = self._command('batch', items)
			if pending:
				r = self._sync_after_client_error(r)
			return r.map(lambda results: (statement.columns, results))

	##
	# Transactions.
	def _rollback(self):
		r = self.squery('ROLLBACK')
		return r.error if r.is_err() else None

	def with_transaction(self, work,
		reraise = True,
		ensure_committed = False,
		begin_opts = None,
	):
		"""
		Run ``work(connection)`` inside ``BEGIN``/``COMMIT``.

		The work fails when it raises an exception or returns an `Err`. On
		failure ``ROLLBACK`` is sent; with `reraise` the exception is raised
		again or the `Err` returned, otherwise a `Rollback` holding the reason
		is returned. A failing COMMIT is handled the same way.

		With `ensure_committed`, a COMMIT whose status is not ``commit``
		fails with `pqsession.exceptions.CommitVerificationError`.
		"""
		with self._lock:
			begin = 'BEGIN' if not begin_opts else 'BEGIN ' + begin_opts
			r = self.squery(begin)
			if r.is_err() or isinstance(r.value, list) or r.value.columns is not None:
				self._rollback()
				err = pg_exc.TransactionInitiationError(
					"could not begin transaction: " + begin, creator = self,
				)
				raise err from (r.error if r.is_err() else None)

			try:
				result = work(self)
			except Exception as exc:
				rollback_error = self._rollback()
				if reraise:
					raise
				return Rollback(exc, rollback_error)
			except BaseException:
				self._rollback()
				raise

			if isinstance(result, Err):
				rollback_error = self._rollback()
				if reraise:
					return result
				return Rollback(result.error, rollback_error)

			c = self.squery('COMMIT')
			if c.is_err():
				err = c.error
			elif ensure_committed and (
				isinstance(c.value, list) or c.value.command != 'commit'
			):
				status = self.get_cmd_status()
				err = pg_exc.CommitVerificationError(
					"transaction was not committed",
					details = {'status' : str(status)},
					creator = self,
				)
				err.status = status
			else:
				return result

			rollback_error = self._rollback()
			if reraise:
				raise err
			return Rollback(err, rollback_error)

	##
	# COPY FROM STDIN
	def copy_from_stdin(self, sql, format = 'text'):
		"""
		Start ``COPY ... FROM STDIN``. `format` is ``'text'`` or
		``('binary', types)``; returns one format tag per column.
		"""
		with self._lock:
			if format != 'text':
				format = (format[0], tuple(format[1]))
			return self._command('copy_from_stdin', sql, format)

	def copy_send_rows(self, rows, timeout = None):
		"""
		Send rows to a binary COPY.

		An `OperationTimeoutError` does not mean that nothing was sent: some
		of the rows may have been written, and the rest is written before
		the next COPY operation. Use `copy_fail` to discard the data of the
		COPY.
		"""
		with self._lock:
			return self._command('copy_send_rows', list(rows), timeout = timeout)

	def copy_write(self, data, timeout = None):
		'Send text format COPY data.'
		with self._lock:
			return self._command('copy_write', data, timeout = timeout)

	def copy_done(self):
		'Finish the COPY; the value is the number of rows copied.'
		with self._lock:
			return self._command('copy_done')

	def copy_fail(self, reason = 'COPY aborted by the client'):
		with self._lock:
			return self._command('copy_fail', reason)

	##
	# Replication.
	def start_replication(self, slot, handler,
		handler_state = None,
		wal_position = '0/0',
		plugin_opts = '',
		align_lsn = False,
		status_interval = 10.0,
	):
		"""
		Start streaming the logical replication slot `slot`. The connection
		must have been opened with ``replication = 'database'``.
		"""
		with self._lock:
			return self._command(
				'start_replication', slot, handler, handler_state,
				wal_position, plugin_opts, align_lsn, status_interval,
			)

	def standby_status_update(self, flushed_lsn, applied_lsn):
		'Acknowledge the positions processed by a queue handler consumer.'
		with self._lock:
			return self._command('standby_status_update', flushed_lsn, applied_lsn)

	##
	# Type cache.
	def update_type_cache(self, codecs):
		"""
		Look up the types of `codecs` and install the codecs. Entries are
		type names, ``(type_name, opts)`` or ``(type_name, codec, opts)``.
		"""
		with self._lock:
			return self._command('update_type_cache', list(codecs), True)
