##
# .test.test_string
##
import unittest
from .. import string as pg_str

# text, quote_ident_if_needed
ident_samples = [
	('base', 'base'),
	('base_2', 'base_2'),
	('_base', '_base'),
	('Base', 'Base'),
	('2base', '"2base"'),
	('ba se', '"ba se"'),
	('ba"se', '"ba""se"'),
	('', '""'),
	('slot-1', '"slot-1"'),
]

class test_strings(unittest.TestCase):
	def test_quote_literal(self):
		self.assertEqual(pg_str.quote_literal(''), "''")
		self.assertEqual(pg_str.quote_literal("hstore"), "'hstore'")
		self.assertEqual(pg_str.quote_literal("it's"), "'it''s'")
		self.assertEqual(pg_str.escape_literal("''"), "''''")

	def test_quote_ident(self):
		self.assertEqual(pg_str.quote_ident('slot'), '"slot"')
		self.assertEqual(pg_str.quote_ident('sl"ot'), '"sl""ot"')
		self.assertEqual(pg_str.escape_ident('"'), '""')

	def test_quote_ident_if_needed(self):
		for text, quoted in ident_samples:
			self.assertEqual(pg_str.quote_ident_if_needed(text), quoted)

	def test_needs_quoting(self):
		self.assertFalse(pg_str.needs_quoting('slot'))
		self.assertTrue(pg_str.needs_quoting('9'))
		self.assertTrue(pg_str.needs_quoting('a.b'))

if __name__ == '__main__':
	unittest.main()
