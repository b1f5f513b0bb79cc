##
# .sys
##
"""
pqsession system functions.

Overridable Functions
---------------------

 errformat
  Information that makes up an exception's displayed "body".
  Effectively, the implementation of `pqsession.exceptions.Error.__str__`

 msghook
  Display a message. Notices that are not delivered to a receiver and
  warnings raised by the client come here.
"""
import sys
import os

def format_message(msg):
	"""
	Format a message object into its label and indented metadata.
	"""
	metas = getattr(msg, '_e_metas', None)
	if metas is None:
		return str(msg)
	it = metas()
	first = next(it)[1]
	lines = [k + ': ' + v for k, v in it]
	return msg._e_label + ': ' + str(first) + ''.join(
		os.linesep + '  ' + x for x in lines
	)

def default_errformat(val):
	"""
	Built-in error formatter. DON'T TOUCH!
	"""
	it = val._e_metas()
	return str(next(it)[1]) \
		+ os.linesep + '  ' \
		+ (os.linesep + '  ').join(
			k + ': ' + v for k, v in it
		)

def default_msghook(msg, format_message = format_message):
	"""
	Built-in message hook. DON'T TOUCH!
	"""
	if sys.stderr and not sys.stderr.closed:
		try:
			sys.stderr.write(format_message(msg) + os.linesep)
		except Exception:
			try:
				sys.excepthook(*sys.exc_info())
			except Exception:
				# gasp.
				pass

def errformat(*args, **kw):
	"""
	Raised Error formatter pointing to default_errformat.

	Override if you like. All pqsession.exceptions.Error's are formatted using
	this function.
	"""
	return default_errformat(*args, **kw)

def msghook(*args, **kw):
	"""
	Message hook pointing to default_msghook.

	Override if you like. All untrapped messages raised by
	connections come here to be printed to stderr.
	"""
	return default_msghook(*args, **kw)

def reset_errformat(with_func = errformat):
	'restore the original errformat function'
	global errformat
	errformat = with_func

def reset_msghook(with_func = msghook):
	'restore the original msghook function'
	global msghook
	msghook = with_func
