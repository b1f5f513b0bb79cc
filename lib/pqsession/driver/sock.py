##
# .driver.sock - the connection actor
##
"""
The owner of a PQv3 connection.

A `Sock` runs a thread that holds the protocol connection and processes the
requests put into its inbox one at a time, in arrival order. Callers use
`Sock.sync_command`, which enqueues the request and blocks on its reply::

	>>> s = Sock(parameters)
	>>> s.sync_command('connect')
	Ok(None)
	>>> s.sync_command('simple_query', 'SELECT 1')
	Ok(pqsession.api.Reply(command = 'select', count = 1, ...))

Every request produces an `Ok` or an `Err`; the thread does not die on
errors. The command implementations are in `pqsession.driver.commands`.

While a COPY FROM STDIN is in progress or a replication stream is active, the
actor also watches the socket: server messages interrupting the COPY and the
CopyData of the replication stream are processed as they arrive.
"""
import sys
import queue
import select
import socket
import threading
from itertools import count
from time import monotonic

from .. import exceptions as pg_exc
from .. import api as pg_api
from ..result import Ok, Err
from ..types.io import TypeIO
from ..protocol import element3 as element
from ..protocol import xact3 as xact
from . import commands

__all__ = ['Sock']

# Kinds that may be issued while COPY FROM STDIN is in progress.
copy_kinds = frozenset((
	'copy_send_rows',
	'copy_write',
	'copy_done',
	'copy_fail',
))

# Kinds that may be issued while streaming.
replication_kinds = frozenset((
	'standby_status_update',
))

_ids = count(1)

def deliver(receiver, event):
	"""
	Give the `event` to the `receiver`. Returns `False` when there is no
	receiver.
	"""
	if receiver is None:
		return False
	try:
		put = getattr(receiver, 'put', None)
		if put is not None:
			put(event)
		else:
			receiver(event)
	except Exception:
		# exception thrown by the receiver?
		# notify the user, but continue...
		sys.excepthook(*sys.exc_info())
	return True

class Sock(object):
	"""
	Actor owning one connection to the server.

	The attributes below belong to the actor thread; they may be read by
	other threads, but only the actor changes them.

	 pq
	  The `pqsession.protocol.client3.Connection`, `None` until connected.
	 typio
	  The `pqsession.types.io.TypeIO` of the connection.
	 server_parameters
	  The parameters reported by the server with ParameterStatus.
	 cmd_status
	  Status of the last completed command.
	 copy
	  The `pqsession.copyman.CopyStream` of a COPY FROM STDIN in progress.
	 replication
	  The `pqsession.replication.ReplicationStream` while streaming.
	 broken
	  The error that made the connection unusable.
	"""
	def __init__(self,
		parameters : "`pqsession.clientparameters.Parameters`",
		connection : "the object given to events as their connection" = None,
	):
		self.parameters = parameters
		self.connection = connection
		self.receiver = parameters.receiver
		self.typio = TypeIO(nulls = parameters.nulls)
		self.pq = None
		self.server_parameters = {}
		self.cmd_status = None
		self.copy = None
		self.copy_xact = None
		self.replication = None
		self.replication_xact = None
		self.broken = None
		self.closed = False
		self.deadline = None

		self.inbox = queue.Queue()
		self._inbox_lock = threading.Lock()
		# The actor is started by the connect request.
		self.thread = None
		# Set by the actor thread when it exits.
		self.stopped = True
		self._wake_r = self._wake_w = None

	def start(self):
		'Start the actor thread. Called with the inbox lock held.'
		self.stopped = False
		self._wake_r, self._wake_w = socket.socketpair()
		self._wake_r.setblocking(False)
		self._wake_w.setblocking(False)
		self.thread = threading.Thread(
			target = self.run, name = 'pqsession-%d' %(next(_ids),),
		)
		self.thread.daemon = True
		self.thread.start()

	def join(self, timeout = None):
		"""
		Wait for the actor thread to exit. Does nothing when called by the
		actor itself, for instance from an event receiver.
		"""
		t = self.thread
		if t is not None and t is not threading.current_thread():
			t.join(timeout)

	def __repr__(self):
		return '<{mod}.{name} {params} {state}>'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			params = (self.parameters.host, self.parameters.port),
			state = self.state,
		)

	@property
	def state(self):
		if self.closed:
			return 'closed'
		if self.broken is not None:
			return 'failed'
		if self.pq is None:
			return 'initialized'
		if self.copy is not None:
			return self.copy.state
		if self.replication is not None:
			return 'streaming'
		return 'normal'

	def wake(self):
		try:
			self._wake_w.send(b'\x00')
		except BlockingIOError:
			# A wake-up is already pending.
			pass

	def _drain_wake(self):
		try:
			while self._wake_r.recv(512):
				pass
		except BlockingIOError:
			pass

	def sync_command(self, kind, *args, timeout = None):
		"""
		Run the command `kind` in the actor and wait for its result.

		With a `timeout`, the request is dropped when the actor did not reach
		it in time, and the wait ends with an `OperationTimeoutError`.

		Only 'connect' starts the actor. It exits after a failed connect and
		after 'terminate'.
		"""
		if kind not in commands.kinds and kind != 'terminate':
			raise ValueError("unknown command kind: " + repr(kind))
		reply = queue.Queue(1)
		deadline = None if timeout is None else monotonic() + timeout
		with self._inbox_lock:
			if self.stopped:
				if kind == 'terminate':
					self.closed = True
					return Ok(None)
				if kind != 'connect' or self.closed:
					return Err(pg_exc.ConnectionDoesNotExistError(
						"operation on closed connection", creator = self.connection
					))
				self.start()
			self.inbox.put((kind, args, reply, deadline))
			self.wake()
		try:
			return reply.get(True, timeout)
		except queue.Empty:
			return Err(pg_exc.OperationTimeoutError(
				"%s did not complete within %s seconds" %(kind, timeout),
				creator = self.connection,
			))

	##
	# Actor thread.
	def run(self):
		try:
			while True:
				request = self.next_request()
				if request is None:
					self.service_stream()
					continue
				kind, args, reply, deadline = request
				if deadline is not None and monotonic() > deadline:
					# The caller stopped waiting; nothing is sent.
					if self.pq is None:
						break
					continue
				self.deadline = deadline
				try:
					r = self.dispatch(kind, args)
				finally:
					self.deadline = None
				reply.put(r)
				if kind == 'terminate' or self.closed or self.pq is None:
					break
		finally:
			with self._inbox_lock:
				self.stopped = True
				self._drop_requests()
				# Under the lock; a new connect may start another actor.
				self._wake_r.close()
				self._wake_w.close()

	def _drop_requests(self):
		'Answer the requests left in the inbox after the actor stopped.'
		while True:
			try:
				kind, args, reply, deadline = self.inbox.get_nowait()
			except queue.Empty:
				break
			reply.put(Err(pg_exc.ConnectionDoesNotExistError(
				"operation on closed connection", creator = self.connection
			)))

	def streaming(self):
		return self.replication is not None or (
			self.copy is not None and self.copy.state == 'copy_in'
		)

	def next_request(self):
		"""
		The next request of the inbox, or `None` when the server sent data
		that needs to be processed first.
		"""
		self._drain_wake()
		if not self.streaming():
			return self.inbox.get()
		try:
			return self.inbox.get_nowait()
		except queue.Empty:
			pass
		if self.pq.read or self.pq.message_buffer.has_message():
			return None
		wait = None
		if self.replication is not None:
			wait = self.replication.next_feedback()
		r, w, x = select.select((self._wake_r, self.pq.socket), (), (), wait)
		self._drain_wake()
		try:
			return self.inbox.get_nowait()
		except queue.Empty:
			return None

	def service_stream(self):
		"""
		Process the data the server sent while the connection streams.
		"""
		try:
			if self.replication is not None:
				if self.pq.pending(0):
					commands.replication_receive(self)
				if self.replication is not None:
					commands.replication_feedback(self)
			elif self.copy is not None and self.pq.pending(0):
				commands.copy_check(self)
		except Exception as err:
			e = pg_exc.ConnectionFailureError(
				"connection failed while streaming: " + str(err),
				creator = self.connection,
			)
			e.__cause__ = err
			self.fail(e)

	def dispatch(self, kind, args):
		if kind == 'terminate':
			command = type(self).close
		else:
			command = commands.kinds[kind]
		if kind not in ('connect', 'terminate'):
			if self.closed or self.pq is None:
				return Err(pg_exc.ConnectionDoesNotExistError(
					"operation on closed connection", creator = self.connection
				))
			if self.broken is not None:
				return Err(pg_exc.ConnectionDoesNotExistError(
					"operation on failed connection",
					details = {'hint' : "A new connection needs to be " \
						"created in order to query the server."},
					creator = self.connection,
				))
			if self.copy is not None and kind not in copy_kinds:
				return Err(pg_exc.OperationError(
					"cannot run %r while COPY FROM STDIN is in progress" %(kind,),
					details = {'hint' : "Finish the COPY with copy_done or copy_fail."},
					creator = self.connection,
				))
			if self.replication is not None and kind not in replication_kinds:
				return Err(pg_exc.OperationError(
					"cannot run %r on a streaming connection" %(kind,),
					creator = self.connection,
				))
		try:
			return command(self, *args)
		except pg_exc.Error as err:
			if err.creator is None:
				err.creator = self.connection
			return Err(err)
		except Exception as err:
			e = pg_exc.DriverError(
				"%s failed: %s" %(kind, err), creator = self.connection,
			)
			e.__cause__ = err
			return Err(e)

	##
	# Protocol transactions.
	def instruction(self, messages):
		return xact.Instruction(messages, asynchook = self.receive_async)

	def execute(self, messages):
		"""
		Run the messages as one protocol transaction and return it once
		completed.
		"""
		x = self.instruction(messages)
		self.pq.push(x)
		if x.state is not xact.Complete:
			self.pq.complete()
		return x

	def failure(self, x):
		"""
		The error of a completed protocol transaction, `None` if it succeeded.
		A fatal error marks the connection as broken.
		"""
		if x.fatal is None:
			return None
		err = self.typio.error_from_message(x.error_message, creator = self.connection)
		cause = getattr(x, 'exception', None)
		if cause is not None:
			err.__cause__ = cause
		if x.fatal is True:
			self.fail(err)
		return err

	def fail(self, err):
		self.broken = err
		if self.copy is not None and self.copy.state == 'copy_in':
			self.copy.abort(err)
		if self.replication is not None:
			self.replication = None
			self.replication_xact = None
			deliver(self.receiver, pg_api.ReplicationEnd(self.connection, err))

	def note_complete(self, msg):
		command = msg.extract_command()
		command = command.decode('ascii').lower() if command is not None else None
		count = msg.extract_count()
		self.cmd_status = command if count is None else (command, count)
		return command, count

	##
	# Asynchronous messages.
	def receive_async(self, msg):
		typ = msg.type
		if typ == element.ShowOption.type:
			name = msg.name.decode('ascii')
			if name == 'client_encoding':
				self.typio.set_encoding(msg.value.decode('ascii'))
			self.server_parameters[name] = self.typio.decode(msg.value)
		elif typ == element.Notice.type:
			m = self.typio.message_from_notice(msg, creator = self.connection)
			if not deliver(self.receiver, pg_api.Notice(self.connection, m)):
				m.emit()
		elif typ == element.Notify.type:
			deliver(self.receiver, pg_api.Notification(
				self.connection,
				msg.pid,
				self.typio.decode(msg.channel),
				self.typio.decode(msg.payload),
			))

	def deliver(self, event):
		return deliver(self.receiver, event)

	##
	# Outside the actor.
	def cancel(self, timeout = None):
		"""
		Ask the server to cancel the command in progress. This runs in the
		caller's thread over a new socket.
		"""
		pq = self.pq
		if pq is None or self.closed:
			return Err(pg_exc.ConnectionDoesNotExistError(
				"operation on closed connection", creator = self.connection
			))
		try:
			pq.interrupt(timeout = timeout)
		except OSError as err:
			e = pg_exc.ConnectionFailureError(
				"could not send the cancel request: " + str(err),
				creator = self.connection,
			)
			e.__cause__ = err
			return Err(e)
		return Ok(None)

	def close(self):
		"""
		Send the disconnect message and close the socket.
		"""
		if self.closed:
			return Ok(None)
		self.closed = True
		pq = self.pq
		if pq is None:
			return Ok(None)
		if self.copy is not None or self.replication is not None:
			# The server is not waiting for a command.
			pq.xact = None
		self.copy = self.copy_xact = None
		self.replication = self.replication_xact = None
		pq.close()
		return Ok(None)
