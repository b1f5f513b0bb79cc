##
# .driver.commands - the wire commands run by the connection actor
##
"""
The commands a `pqsession.driver.sock.Sock` runs. Each takes the actor as
its first argument, sends the wire messages of its kind, and returns an `Ok`
holding the decoded response or an `Err` holding the error.

Commands that end with a Flush instead of a Sync leave the server waiting for
the rest of the pipeline. When such a command fails, the server discards
messages until it receives a Sync; `pqsession.driver.pq3.Connection` sends
that Sync.
"""
from time import monotonic

from .. import exceptions as pg_exc
from .. import api as pg_api
from .. import copyman
from .. import replication as pg_replication
from ..result import Ok, Err
from ..string import quote_ident, quote_literal
from ..types.io import default_dynamic_codecs
from ..protocol import element3 as element
from ..protocol import xact3 as xact
from ..protocol import client3

BinaryFormat = element.BinaryFormat
StringFormat = element.StringFormat

def statement_columns(sock, desc):
	"""
	Columns of a statement description. The formats are chosen by the
	client: binary when the type has binary I/O.
	"""
	typio = sock.typio
	return [
		pg_api.Column(
			typio.decode(name), typio.type_name(oid), oid, size, modifier,
			1 if typio.resolve(oid)[1] is not None else 0,
			table_oid, attnum,
		)
		for (name, table_oid, attnum, oid, size, modifier, format) in desc
	]

def described_columns(sock, desc):
	'Columns with the formats reported by the server.'
	typio = sock.typio
	return [
		pg_api.Column(
			typio.decode(name), typio.type_name(oid), oid, size, modifier,
			format, table_oid, attnum,
		)
		for (name, table_oid, attnum, oid, size, modifier, format) in desc
	]

def result_formats(columns):
	if not columns:
		return ()
	return [BinaryFormat if c.format == 1 else StringFormat for c in columns]

def encode(sock, name):
	if name.__class__ is bytes:
		return name
	return sock.typio.encode(name)

def bind_message(sock, statement, parameters, portal = ''):
	"""
	Build the Bind of `statement`. The number of parameters is checked
	before anything is encoded.
	"""
	parameters = tuple(parameters)
	if len(parameters) != len(statement.parameter_oids):
		raise pg_exc.ParameterMismatchError(
			"statement requires %d parameters, given %d" %(
				len(statement.parameter_oids), len(parameters)
			),
			details = {
				'hint' : "The number of parameters must match the " \
					"placeholders of the statement.",
			},
		)
	formats, args = sock.typio.encode_parameters(
		statement.parameter_oids, parameters
	)
	return element.Bind(
		encode(sock, portal), encode(sock, statement.name),
		formats, args, result_formats(statement.columns),
	)

def reply_from(sock, messages, columns):
	"""
	Build the `Reply` of one Execute from its response messages.
	"""
	reply = pg_api.Reply(columns = columns)
	decode_row = sock.typio.decode_row
	rows = reply.rows
	for msg in messages:
		typ = msg.type
		if typ == element.Tuple.type:
			rows.append(decode_row(columns, msg))
		elif typ == element.Complete.type:
			reply.command, reply.count = sock.note_complete(msg)
		elif typ == element.Suspension.type:
			reply.suspended = True
			reply.count = len(rows)
	return reply

##
# Connection establishment.
def connect(sock):
	if sock.pq is not None:
		return Err(pg_exc.OperationError("connection is already established"))
	params = sock.parameters
	typio = sock.typio
	startup = params.startup()
	password = params.resolve_password()
	try:
		factories = params.socket_factories()
	except OSError as err:
		e = pg_exc.ClientCannotConnectError(
			"could not resolve the server address %r" %(params.host,),
		)
		e.__cause__ = err
		return Err(e)

	# When ssl is None: SSL negotiation will not occur.
	# When ssl is True: SSL negotiation will occur *and* it must succeed.
	# When ssl is False: SSL negotiation will occur but it may fail(NOSSL).
	attempts = [(ssl, sf) for sf in factories for ssl in params.ssl_sequence()]
	failures = []
	can_skip = False
	for ssl, sf in attempts:
		if can_skip is True:
			# the last attempt failed and knows this attempt will fail too.
			can_skip = False
			continue
		pq = client3.Connection(sf, startup, password = password)
		if params.trace is not None:
			pq.tracer = params.trace

		# Grab the negotiation transaction before
		# connecting as it will be needed later if successful.
		neg = pq.xact
		pq.connect(ssl = ssl, timeout = params.timeout)

		# It successfully connected if pq.xact is None;
		# The startup/negotiation xact completed.
		if pq.xact is None:
			sock.pq = pq
			for x in neg.asyncs:
				sock.receive_async(x)
			break
		elif pq.socket is not None:
			pq.socket.close()

		didssl = getattr(pq, 'ssl_negotiation', -1)
		if ssl is False and (didssl is False or hasattr(pq.xact, 'exception')):
			# The server refused SSL and the negotiation continued without it,
			# or the socket failed and will fail again for the plain attempt.
			can_skip = True

		err = typio.error_from_message(pq.xact.error_message)
		cause = getattr(pq.xact, 'exception', None)
		if cause is not None:
			err.__cause__ = cause
		failures.append(err)
		if err.source == 'SERVER':
			# The server answered; other addresses will answer the same.
			break
	else:
		failures = failures or [pg_exc.ClientCannotConnectError(
			"no addresses to connect to for %r" %(params.host,)
		)]

	if sock.pq is None:
		if len(failures) == 1:
			return Err(failures[0])
		e = pg_exc.ClientCannotConnectError(
			"could not establish connection to server",
			details = {'hint' : '; '.join([
				'%s: %s' %(x.code, x.message) for x in failures
			])},
		)
		e.failures = tuple(failures)
		return Err(e)

	# Type cache refresh for the codecs of extension types.
	if params.replication is None:
		if params.codecs is None:
			r = update_type_cache(sock, default_dynamic_codecs, False)
			if r.is_err():
				w = pg_exc.TypeCacheWarning(
					"could not refresh the type cache: " + r.error.message,
					creator = sock.connection,
				)
				if not sock.deliver(pg_api.Notice(sock.connection, w)):
					w.emit()
		elif params.codecs:
			try:
				r = update_type_cache(sock, params.codecs, True)
			except pg_exc.Error as err:
				r = Err(err)
			if r.is_err():
				sock.close()
				return r
	elif params.codecs:
		sock.typio.update_types((), sock.typio.codec_entries(params.codecs))
	sock.cmd_status = None
	return Ok(None)

def update_type_cache(sock, codecs, required = True):
	"""
	Look up the types of the `codecs` in ``pg_type`` and install the codecs.
	With `required`, types missing from the database are an error.
	"""
	entries = sock.typio.codec_entries(codecs)
	if not entries:
		return Err(pg_exc.EmptyCodecListError(
			"no codecs given for the type cache refresh"
		))
	names = sorted(set(x[0] for x in entries))
	r = simple_query(sock,
		"SELECT oid, typname, typarray FROM pg_catalog.pg_type " \
		"WHERE typname IN (" + ', '.join(map(quote_literal, names)) + ")"
	)
	if r.is_err():
		return r
	found = {}
	rows = []
	for oid, name, array_oid in r.value.rows:
		found[name] = int(oid)
		rows.append((int(oid), name, int(array_oid)))
	missing = [x for x in names if x not in found]
	if missing and required:
		return Err(pg_exc.UnknownTypeError(
			"types not found in pg_type: " + ', '.join(missing),
			details = {'hint' : "The extension providing the type may not be installed."},
		))
	sock.typio.update_types(rows, entries)
	return Ok(found)

##
# Extended query protocol.
def parse(sock, sql, types = (), name = ''):
	typio = sock.typio
	oids = [typio.resolve_type(x) for x in types]
	name_b = encode(sock, name)
	x = sock.execute((
		element.Parse(name_b, encode(sock, sql), oids),
		element.DescribeStatement(name_b),
		element.FlushMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(statement_from(sock, name, sql, x.messages_received()))

def statement_from(sock, name, sql, messages):
	typio = sock.typio
	parameter_oids = ()
	columns = None
	for msg in messages:
		if msg.type == element.AttributeTypes.type:
			parameter_oids = tuple(msg)
		elif msg.type == element.TupleDescriptor.type:
			columns = statement_columns(sock, msg)
	return pg_api.Statement(
		name, sql, parameter_oids,
		[typio.type_name(x) for x in parameter_oids],
		columns,
	)

def bind(sock, statement, parameters, portal = ''):
	x = sock.execute((
		bind_message(sock, statement, parameters, portal),
		element.FlushMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(None)

def execute(sock, statement, portal = '', max_rows = 0):
	x = sock.execute((
		element.Execute(encode(sock, portal), max_rows),
		element.FlushMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	columns = statement.columns if statement is not None else None
	return Ok(reply_from(sock, x.messages_received(), columns))

def describe_statement(sock, name):
	x = sock.execute((
		element.DescribeStatement(encode(sock, name)),
		element.FlushMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(statement_from(sock, name, None, x.messages_received()))

def describe_portal(sock, name):
	x = sock.execute((
		element.DescribePortal(encode(sock, name)),
		element.FlushMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	for msg in x.messages_received():
		if msg.type == element.TupleDescriptor.type:
			return Ok(described_columns(sock, msg))
	return Ok(None)

def close(sock, kind, name):
	if kind == 'statement':
		msg = element.CloseStatement(encode(sock, name))
	elif kind == 'portal':
		msg = element.ClosePortal(encode(sock, name))
	else:
		raise ValueError("cannot close %r; use 'statement' or 'portal'" %(kind,))
	x = sock.execute((msg, element.FlushMessage))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(None)

def sync(sock):
	x = sock.execute((element.SynchronizeMessage,))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(None)

def extended_query(sock, statement, parameters = (), portal = ''):
	"""
	Bind, Execute, Close the portal and Sync.
	"""
	portal_b = encode(sock, portal)
	x = sock.execute((
		bind_message(sock, statement, parameters, portal),
		element.Execute(portal_b, 0),
		element.ClosePortal(portal_b),
		element.SynchronizeMessage,
	))
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	return Ok(reply_from(sock, x.messages_received(), statement.columns))

def batch(sock, items):
	"""
	Bind and Execute every ``(statement, parameters)`` of `items` on the
	unnamed portal, followed by a single Sync.

	The result holds one `Ok(Reply)` per item processed. When an item fails,
	the server skips the rest of the pipeline and the result ends with the
	`Err` of the failed item.
	"""
	items = list(items)
	messages = []
	for statement, parameters in items:
		# Mismatches fail the whole batch before anything is sent.
		messages.append(bind_message(sock, statement, parameters))
		messages.append(element.Execute(b'', 0))
	messages.append(element.SynchronizeMessage)
	x = sock.execute(messages)
	err = sock.failure(x)
	if err is not None and x.fatal is True:
		return Err(err)

	results = []
	current = None
	for msg in x.messages_received():
		typ = msg.type
		if typ == element.BindComplete.type:
			current = []
		elif typ == element.Ready.type:
			continue
		else:
			current.append(msg)
			if typ in (element.Complete.type, element.Suspension.type, element.Null.type):
				statement = items[len(results)][0]
				results.append(Ok(reply_from(sock, current, statement.columns)))
				current = None
	if err is not None:
		failed = x.error_offset // 2
		del results[failed:]
		results.append(Err(err))
	return Ok(results)

##
# Simple query protocol.
def simple_query(sock, sql):
	"""
	Run `sql` with the simple query protocol. Values are returned as text.
	Several statements produce a list of replies.
	"""
	x = sock.execute((element.Query(encode(sock, sql)),))
	err = sock.failure(x)
	if err is not None:
		return Err(err)

	decode_row = sock.typio.decode_row
	replies = []
	reply = None
	for msg in x.messages_received():
		if msg.__class__ is bytes:
			# COPY TO STDOUT data
			reply.rows.append(msg)
			continue
		typ = msg.type
		if typ == element.TupleDescriptor.type:
			reply = pg_api.Reply(columns = described_columns(sock, msg))
		elif typ == element.Tuple.type:
			reply.rows.append(decode_row(reply.columns, msg))
		elif typ == element.CopyToBegin.type:
			reply = pg_api.Reply()
		elif typ == element.Complete.type:
			if reply is None:
				reply = pg_api.Reply()
			reply.command, reply.count = sock.note_complete(msg)
			replies.append(reply)
			reply = None
		elif typ == element.Null.type:
			replies.append(pg_api.Reply())
	if len(replies) == 1:
		return Ok(replies[0])
	return Ok(replies)

##
# COPY FROM STDIN
def copy_from_stdin(sock, sql, format = 'text'):
	"""
	Start the COPY of `sql`. `format` is ``'text'`` or ``('binary', types)``.
	"""
	typio = sock.typio
	if format == 'text':
		oids = ()
	else:
		kind, types = format
		if kind != 'binary':
			raise ValueError("unknown COPY format: " + repr(kind))
		oids = [typio.resolve_type(t) for t in types]
		for oid in oids:
			if not typio.has_binary_io(oid):
				return Err(pg_exc.TypeIOError(
					"type %s has no binary I/O for COPY" %(typio.type_name(oid),),
					details = {'hint' : "Use the text format for this table."},
				))
		format = 'binary'

	x = sock.instruction((element.Query(encode(sock, sql)),))
	pq = sock.pq
	pq.push(x)
	while x.state is not xact.Complete and x.state[0] is not xact.Sending:
		pq.step()
	if x.state is xact.Complete:
		err = sock.failure(x)
		if err is not None:
			return Err(err)
		return Err(pg_exc.CopyModeError(
			"statement did not start a COPY FROM STDIN",
		))

	begin = [
		m for m in x.messages_received()
		if getattr(m, 'type', None) == element.CopyFromBegin.type
	][-1]
	tags = [copyman.format_tags.get(f, str(f)) for f in begin.formats]
	stream = copyman.CopyStream(format, oids, tags)

	mismatch = None
	if begin.format != (1 if stream.binary else 0):
		mismatch = pg_exc.NotBinaryFormatError(
			"COPY statement does not use the binary format"
		) if stream.binary else pg_exc.NotTextFormatError(
			"COPY statement uses the binary format"
		)
	elif stream.binary and len(oids) != len(begin.formats):
		mismatch = pg_exc.ParameterMismatchError(
			"COPY has %d columns, but %d types were given" %(
				len(begin.formats), len(oids)
			)
		)
	if mismatch is not None:
		x.messages = x.CopyFailSequence
		pq.complete()
		sock.failure(x)
		return Err(mismatch)

	sock.copy = stream
	sock.copy_xact = x
	if stream.binary:
		r = copy_send(sock, [copyman.binary_header])
		if r.is_err():
			return r
	return Ok(tags)

def copy_resume(sock):
	"""
	Send the data left unsent by a timed out write.
	"""
	pq = sock.pq
	if pq.message_data:
		pq.step()

def copy_send(sock, chunks):
	"""
	Send `chunks` as COPY data within the deadline of the request.
	"""
	pq = sock.pq
	x = sock.copy_xact
	s = pq.socket
	remaining = None
	if sock.deadline is not None:
		remaining = sock.deadline - monotonic()
		if remaining <= 0:
			return Err(pg_exc.OperationTimeoutError("COPY data could not be sent in time"))
	s.settimeout(remaining)
	try:
		copy_resume(sock)
		x.messages = chunks
		while x.messages is chunks and x.state is not xact.Complete:
			pq.step()
	except OSError as err:
		if not isinstance(err, pq.socket_factory.timeout_exception):
			raise
		e = pg_exc.OperationTimeoutError(
			"COPY data could not be sent within the timeout",
			details = {'hint' : "The unsent data is sent before the next COPY operation."},
		)
		e.__cause__ = err
		return Err(e)
	finally:
		if pq.socket is not None:
			pq.socket.settimeout(None)
	if x.state is xact.Complete:
		sock.copy = None
		return Err(sock.failure(x) or pg_exc.CopyModeError("COPY ended unexpectedly"))
	return Ok(None)

def copy_state_error(sock, format):
	if sock.copy is None:
		return pg_exc.NotInCopyModeError("no COPY FROM STDIN is in progress")
	if sock.copy.state == 'copy_in' and sock.pq.pending(0):
		copy_check(sock)
	return sock.copy.check_send(format)

def copy_send_rows(sock, rows):
	err = copy_state_error(sock, 'binary')
	if err is not None:
		return Err(err)
	return copy_send(sock, [sock.copy.encode(rows, sock.typio)])

def copy_write(sock, data):
	err = copy_state_error(sock, 'text')
	if err is not None:
		return Err(err)
	if data.__class__ is not bytes:
		data = sock.typio.encode(data) if isinstance(data, str) else bytes(data)
	return copy_send(sock, [data])

def copy_check(sock):
	"""
	Process the messages the server sent while COPY data was being sent.
	Anything but asynchronous messages means that the COPY was aborted.
	"""
	pq = sock.pq
	x = sock.copy_xact
	if not pq.read and not pq.read_messages():
		sock.failure(x)
		return
	n = 0
	for m in pq.read:
		if m[0] not in xact.AsynchronousMap:
			break
		sock.receive_async(xact.AsynchronousMap[m[0]](m[1]))
		n += 1
	pq.read = pq.read[n:]
	if not pq.read:
		return

	x.copy_interrupted()
	pq.complete()
	err = sock.failure(x) or pg_exc.CopyModeError("COPY was ended by the server")
	if err.creator is None:
		err.creator = sock.connection
	sock.copy.abort(err)
	if not sock.deliver(pg_api.CopyError(sock.connection, err)):
		err.emit()

def copy_done(sock):
	"""
	Finish the COPY and return the number of rows copied.
	"""
	stream = sock.copy
	if stream is None:
		return Err(pg_exc.NotInCopyModeError("no COPY FROM STDIN is in progress"))
	if stream.state == 'copy_in' and sock.pq.pending(0):
		copy_check(sock)
	if stream.state == 'copy_error':
		sock.copy = sock.copy_xact = None
		return Err(stream.error)

	pq = sock.pq
	x = sock.copy_xact
	copy_resume(sock)
	if stream.binary:
		x.messages = [copyman.binary_trailer]
		while x.messages is not x.CopyFailSequence and x.state is not xact.Complete:
			pq.step()
	if x.state is not xact.Complete:
		x.messages = x.CopyDoneSequence
		pq.complete()
	sock.copy = sock.copy_xact = None
	err = sock.failure(x)
	if err is not None:
		return Err(err)
	count = None
	for msg in x.messages_received():
		if getattr(msg, 'type', None) == element.Complete.type:
			command, count = sock.note_complete(msg)
	return Ok(count)

def copy_fail(sock, reason = 'COPY aborted by the client'):
	"""
	Abort the COPY. The server's resulting error is returned as the value.
	"""
	stream = sock.copy
	if stream is None:
		return Err(pg_exc.NotInCopyModeError("no COPY FROM STDIN is in progress"))
	if stream.state == 'copy_error':
		sock.copy = sock.copy_xact = None
		return Ok(stream.error)

	pq = sock.pq
	x = sock.copy_xact
	copy_resume(sock)
	if x.state is not xact.Complete:
		x.CopyFailSequence = (element.CopyFail(encode(sock, reason)),) + \
			tuple(x.CopyFailSequence[1:])
		x.messages = x.CopyFailSequence
		pq.complete()
	sock.copy = sock.copy_xact = None
	err = sock.failure(x)
	if x.fatal is True:
		return Err(err)
	return Ok(err)

##
# Logical replication.
def start_replication(sock,
	slot, handler, handler_state = None,
	wal_position = '0/0', plugin_opts = '',
	align_lsn = False, status_interval = 10.0,
):
	if sock.parameters.replication is None:
		return Err(pg_exc.OperationError(
			"replication requires a replication connection",
			details = {'hint' : "Connect with replication = 'database'."},
		))
	handler = pg_replication.adapt_handler(handler, sock.connection)
	if isinstance(wal_position, int):
		start = wal_position
	else:
		start = pg_replication.parse_lsn(wal_position)
	sql = 'START_REPLICATION SLOT ' + quote_ident(slot) + \
		' LOGICAL ' + pg_replication.format_lsn(start)
	if plugin_opts:
		sql += ' (' + plugin_opts + ')'

	x = sock.instruction((element.Query(encode(sock, sql)),))
	pq = sock.pq
	pq.push(x)
	while x.state is not xact.Complete and not any(
		getattr(m, 'type', None) == element.CopyBothBegin.type
		for m in x.messages_received()
	):
		pq.step()
	if x.state is xact.Complete:
		err = sock.failure(x)
		if err is not None:
			return Err(err)
		return Err(pg_exc.OperationError(
			"START_REPLICATION did not start streaming",
		))

	sock.replication = pg_replication.ReplicationStream(
		handler, handler_state, start,
		align_lsn = align_lsn, status_interval = status_interval,
	)
	sock.replication_xact = x
	replication_consume(sock)
	return Ok(None)

def replication_send(sock, payloads):
	if not payloads:
		return
	if not sock.pq.write_messages(list(payloads)):
		sock.failure(sock.replication_xact)

def replication_consume(sock):
	"""
	Give the CopyData received to the stream and send its responses.
	"""
	x = sock.replication_xact
	stream = sock.replication
	outgoing = []
	for received in x.completed:
		for msg in received[1]:
			if msg.__class__ is bytes:
				outgoing.extend(stream.handle(msg))
	del x.completed[:]
	if x.state is xact.Complete:
		# The server ended the stream. A fatal error ends it in sock.fail.
		err = sock.failure(x)
		if sock.replication is not None:
			sock.replication = None
			sock.replication_xact = None
			sock.deliver(pg_api.ReplicationEnd(sock.connection, err))
		return
	replication_send(sock, outgoing)

def replication_receive(sock):
	sock.pq.step()
	replication_consume(sock)

def replication_feedback(sock):
	replication_send(sock, sock.replication.feedback())

def standby_status_update(sock, flushed_lsn, applied_lsn):
	stream = sock.replication
	if stream is None:
		return Err(pg_exc.OperationError("the connection is not streaming"))
	replication_send(sock, (stream.acknowledge(flushed_lsn, applied_lsn),))
	if sock.broken is not None:
		return Err(sock.broken)
	return Ok(None)

kinds = {
	'connect' : connect,
	'parse' : parse,
	'bind' : bind,
	'execute' : execute,
	'describe_statement' : describe_statement,
	'describe_portal' : describe_portal,
	'close' : close,
	'sync' : sync,
	'simple_query' : simple_query,
	'extended_query' : extended_query,
	'prepared_query' : extended_query,
	'batch' : batch,
	'copy_from_stdin' : copy_from_stdin,
	'copy_send_rows' : copy_send_rows,
	'copy_write' : copy_write,
	'copy_done' : copy_done,
	'copy_fail' : copy_fail,
	'update_type_cache' : update_type_cache,
	'start_replication' : start_replication,
	'standby_status_update' : standby_status_update,
}
