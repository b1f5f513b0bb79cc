##
# .string - quoting of literals and identifiers
##
"""
String quoting for the SQL the session composes itself: transaction
commands, type cache lookups and replication commands.
"""

def escape_literal(text):
	"Replace every instance of ' with ''"
	return text.replace("'", "''")

def quote_literal(text):
	"Escape the literal and wrap it in [single] quotations"
	return "'" + text.replace("'", "''") + "'"

def escape_ident(text):
	'Replace every instance of " with ""'
	return text.replace('"', '""')

def needs_quoting(text):
	return not (text and not text[0].isdecimal() and text.replace('_', 'a').isalnum())

def quote_ident(text):
	"Replace every instance of '\"' with '\"\"' *and* place '\"' on each end"
	return '"' + text.replace('"', '""') + '"'

def quote_ident_if_needed(text):
	"""
	If needed, replace every instance of '"' with '""' *and* place '"' on each end.
	Otherwise, just return the text.
	"""
	return quote_ident(text) if needs_quoting(text) else text
