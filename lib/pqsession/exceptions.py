##
# .exceptions - Exception hierarchy for client and server errors.
##
"""
Errors and warnings with associated state codes.

The primary entry point of this module is the `ErrorLookup` function. Given an
SQL state code, it gives back the most appropriate `QueryError` subclass.

There are three families of errors:

 `QueryError`
  The server rejected a command. The session is still usable.

 `ConnectionError`
  Transport or protocol failure. The connection is unusable afterwards.
  Failures while establishing a connection are `ClientCannotConnectError`.

 `DriverError`
  Client-side failures: parameter mismatches, COPY state violations, commit
  verification and type I/O errors. No wire traffic is involved.

For more information on error codes see:
 http://www.postgresql.org/docs/current/static/errcodes-appendix.html
"""
from functools import partial
from operator import attrgetter
from .message import Message
from . import sys as pq_sys

PythonException = Exception
class Exception(Exception):
	'Base pqsession exception class'
	pass

class Disconnection(Exception):
	'Exception identifying errors that result in disconnection'

class Warning(Message):
	code = '01000'
	_e_label = property(attrgetter('__class__.__name__'))

class DriverWarning(Warning):
	code = '01-00'
	source = 'CLIENT'
class IgnoredClientParameterWarning(DriverWarning):
	'Warn the user of a valid, but ignored parameter.'
	code = '01-CP'
class TypeCacheWarning(DriverWarning):
	'The type cache could not be refreshed.'
	code = '01-TC'

class DeprecationWarning(Warning):
	code = '01P01'

class Error(Message, Exception):
	'A pqsession Error'
	_e_label = 'ERROR'
	code = ''

	def __str__(self):
		'Call .sys.errformat(self)'
		return pq_sys.errformat(self)

	@property
	def fatal(self):
		f = self.details.get('severity')
		return None if f is None else f in ('PANIC', 'FATAL')

class DriverError(Error):
	"Errors originating in the client's implementation."
	source = 'CLIENT'
	code = '--000'
class AuthenticationMethodError(DriverError, Disconnection):
	"""
	Server requested an authentication method that is not supported by the
	client.
	"""
	code = '--AUT'
class InsecurityError(DriverError, Disconnection):
	"""
	Error signifying a secure channel to a server cannot be established.
	"""
	code = '--SEC'
class ConnectTimeoutError(DriverError, Disconnection):
	'Client was unable to esablish a connection in the given time'
	code = '--TOE'

class TypeIOError(DriverError):
	"""
	Failed to pack or unpack a value.
	"""
	code = '--TIO'
class ParameterError(TypeIOError):
	code = '--PIO'
class ColumnError(TypeIOError):
	code = '--CIO'
class ParameterMismatchError(ParameterError):
	"""
	The number of parameter values does not match the number of parameter
	types of the statement. Raised before any message is sent.
	"""
	code = '--PMM'
class UnknownTypeError(TypeIOError):
	"""
	A type name or array specification could not be resolved to an OID.
	"""
	code = '--UTY'

class OperationError(DriverError):
	"""
	An invalid operation on an interface element.
	"""
	code = '--OPE'
class EmptyCodecListError(OperationError):
	'A type cache refresh was requested for no codecs.'
	code = '--ECL'
class OperationTimeoutError(OperationError):
	'The operation could not be completed in the given time.'
	code = '--TMO'

class CopyModeError(OperationError):
	'COPY operation used in the wrong connection state.'
	code = '--CPY'
class NotInCopyModeError(CopyModeError):
	'COPY data or completion sent while no COPY FROM STDIN is active.'
	code = '--CNM'
class NotBinaryFormatError(CopyModeError):
	'Rows sent to a COPY that was not started in binary format.'
	code = '--CNB'
class NotTextFormatError(CopyModeError):
	'Raw data sent to a COPY that was started in binary format.'
	code = '--CNT'

class CommitVerificationError(DriverError):
	"""
	COMMIT was acknowledged, but the transaction was rolled back.
	`status` holds the command status that was seen.
	"""
	code = '--CVE'

class ConnectionError(Error, Disconnection):
	code = '08000'
class ConnectionDoesNotExistError(ConnectionError):
	"""
	The connection is closed or was never connected.
	"""
	code = '08003'
class ConnectionFailureError(ConnectionError):
	'Raised when a connection is dropped'
	code = '08006'

class ClientCannotConnectError(ConnectionError):
	"""
	Client was unable to establish a connection to the server.

	The `failures` attribute holds the errors of each attempt.
	"""
	code = '08001'
	failures = ()
ConnectError = ClientCannotConnectError

class ConnectionRejectionError(ConnectionError):
	code = '08004'
class TransactionResolutionUnknownError(ConnectionError):
	code = '08007'
class ProtocolError(ConnectionError):
	code = '08P01'

class QueryError(Error):
	"""
	The server rejected a command.
	"""
	code = None

class TransactionError(QueryError):
	pass

class FeatureError(QueryError):
	"Unsupported feature"
	code = '0A000'

class TransactionInitiationError(TransactionError):
	code = '0B000'

class CardinalityError(QueryError):
	"Wrong number of rows returned"
	code = '21000'

class AuthenticationSpecificationError(QueryError, Disconnection):
	code = '28000'
class InvalidPasswordError(AuthenticationSpecificationError):
	code = '28P01'

class TRError(TransactionError):
	"Transaction Rollback"
	code = '40000'
class DeadlockError(TRError):
	code = '40P01'
class SerializationError(TRError):
	code = '40001'

class ITSError(TransactionError):
	"Invalid Transaction State"
	code = '25000'
class ActiveTransactionError(ITSError):
	code = '25001'
class ReadOnlyTransactionError(ITSError):
	"Occurs when an alteration occurs in a read-only transaction."
	code = '25006'
class NoActiveTransactionError(ITSError):
	code = '25P01'
class InFailedTransactionError(ITSError):
	"Occurs when an action occurs in a failed transaction."
	code = '25P02'

class SavepointError(TransactionError):
	code = '3B000'

class IRError(QueryError):
	"Insufficient Resource Error"
	code = '53000'
class DiskFullError(IRError):
	code = '53100'
class TooManyConnectionsError(IRError):
	code = '53300'

class ONIPSError(QueryError):
	"Object Not In Prerequisite State"
	code = '55000'
class ObjectInUseError(ONIPSError):
	code = '55006'
class UnavailableLockError(ONIPSError):
	code = '55P03'

class SEARVError(QueryError):
	"Syntax Error or Access Rule Violation"
	code = '42000'
class InsufficientPrivilegeError(SEARVError):
	code = '42501'
class SyntaxError(SEARVError):
	code = '42601'

class TypeError(SEARVError):
	pass
class TypeMismatchError(TypeError):
	code = '42804'
class IndeterminateTypeError(TypeError):
	code = '42P18'
class WrongObjectTypeError(TypeError):
	code = '42809'

class UndefinedError(SEARVError):
	pass
class UndefinedColumnError(UndefinedError):
	code = '42703'
class UndefinedFunctionError(UndefinedError):
	code = '42883'
class UndefinedTableError(UndefinedError):
	code = '42P01'
class UndefinedParameterError(UndefinedError):
	code = '42P02'
class UndefinedObjectError(UndefinedError):
	code = '42704'

class DuplicateError(SEARVError):
	pass
class DuplicateColumnError(DuplicateError):
	code = '42701'
class DuplicatePreparedStatementError(DuplicateError):
	code = '42P05'
class DuplicateTableError(DuplicateError):
	code = '42P07'
class DuplicateObjectError(DuplicateError):
	code = '42710'

class AmbiguityError(SEARVError):
	pass
class AmbiguousColumnError(AmbiguityError):
	code = '42702'
class AmbiguousFunctionError(AmbiguityError):
	code = '42725'

class CursorStateError(QueryError):
	code = '24000'

class NameError(QueryError):
	pass
class CatalogNameError(NameError):
	code = '3D000'
class CursorNameError(NameError):
	code = '34000'
class StatementNameError(NameError):
	code = '26000'
class SchemaNameError(NameError):
	code = '3F000'

class ICVError(QueryError):
	"Integrity Contraint Violation"
	code = '23000'
class RestrictError(ICVError):
	code = '23001'
class NotNullError(ICVError):
	code = '23502'
class ForeignKeyError(ICVError):
	code = '23503'
class UniqueError(ICVError):
	code = '23505'
class CheckError(ICVError):
	code = '23514'

class DataError(QueryError):
	code = '22000'
class StringRightTruncationError(DataError):
	code = '22001'
class NullValueNotAllowedError(DataError):
	code = '22004'
class ZeroDivisionError(DataError):
	code = '22012'
class BadCopyError(DataError):
	code = '22P04'
class TextRepresentationError(DataError):
	code = '22P02'
class BinaryRepresentationError(DataError):
	code = '22P03'
class DateTimeFormatError(DataError):
	code = '22007'
class ParameterValueError(DataError):
	code = '22023'
class NumericRangeError(DataError):
	code = '22003'
class EncodingError(DataError):
	code = '22021'

class InternalError(QueryError):
	code = 'XX000'

class OIError(QueryError):
	"Operator Intervention"
	code = '57000'
class QueryCanceledError(OIError):
	code = '57014'
class AdminShutdownError(OIError, Disconnection):
	code = '57P01'
class CrashShutdownError(OIError, Disconnection):
	code = '57P02'
class ServerNotReadyError(OIError, Disconnection):
	'Thrown when a connection is established to a server that is still starting up.'
	code = '57P03'

class PLPGSQLError(QueryError):
	"Error raised by a PL/PgSQL procedural function"
	code = 'P0000'
class PLPGSQLRaiseError(PLPGSQLError):
	"Error raised by a PL/PgSQL RAISE statement."
	code = 'P0001'

# Setup mapping to provide code based exception lookup.
code_to_error = {}
code_to_warning = {}
def map_errors_and_warnings(
	objs : "A iterable of `Warning`s and `Error`'s",
	error_container : "apply the code to error association to this object" = code_to_error,
	warning_container : "apply the code to warning association to this object" = code_to_warning,
):
	"""
	Construct the code-to-error and code-to-warning associations.
	"""
	for obj in objs:
		if not isinstance(obj, type):
			continue
		code = getattr(obj, 'code', None)
		if code is None:
			# It has no code attribute, or the code was set to None.
			# If it's code is None, we don't map it as it's a "container".
			continue

		if issubclass(obj, Error):
			container = error_container
		elif issubclass(obj, Warning):
			container = warning_container
		else:
			continue

		cur_obj = container.get(code)
		if cur_obj is None or issubclass(cur_obj, obj):
			# There is no object yet, or the object at the code
			# is not the most general class.
			# The latter condition comes into play when
			# there are sub-Class types that share the Class code
			# with the most general type. (See TypeError)
			container[code] = obj

def code_lookup(
	default : "The object to return when no code or class is found",
	container : "where to look for the object associated with the code",
	code : "the code to find the exception for"
):
	obj = container.get(code)
	if obj is None:
		obj = container.get(code[:2] + "000", default)
	return obj

map_errors_and_warnings(list(globals().values()))
ErrorLookup = partial(code_lookup, QueryError, code_to_error)
WarningLookup = partial(code_lookup, Warning, code_to_warning)
